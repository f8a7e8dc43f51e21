from __future__ import annotations

import json
import math
import random
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Final

from ...contracts.trainer import DatasetPlan
from ...errors.base import DataFileError

PROMPT_TEMPLATE: Final[str] = "### Instruction:\n{instruction}\n\n### Response:\n{output}"
PROMPT_TEMPLATE_WITH_INPUT: Final[str] = (
    "### Instruction:\n{instruction}\n\n### Input:\n{input}\n\n### Response:\n{output}"
)

Record = Mapping[str, object]


def load_records(path: Path) -> list[Record]:
    """Read a JSONL file into records; every non-blank line must be a JSON object."""
    if not path.is_file():
        raise DataFileError(f"data file not found: {path}")
    records: list[Record] = []
    try:
        with path.open(encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                s = line.strip()
                if not s:
                    continue
                try:
                    obj: object = json.loads(s)
                except json.JSONDecodeError as e:
                    raise DataFileError(
                        f"{path.name}: line {lineno}: invalid JSON ({e.msg})"
                    ) from None
                if not isinstance(obj, dict):
                    raise DataFileError(f"{path.name}: line {lineno}: expected a JSON object")
                records.append(obj)
    except UnicodeDecodeError as e:
        raise DataFileError(f"{path.name}: not valid UTF-8 text ({e.reason})") from None
    except OSError as e:
        raise DataFileError(f"cannot read data file {path}: {e}") from e
    if not records:
        raise DataFileError(f"{path.name}: no records found")
    return records


def _field(rec: Record, name: str, index: int, *, required: bool) -> str:
    value = rec.get(name)
    if value is None:
        if required:
            raise DataFileError(f"record {index}: missing required field '{name}'")
        return ""
    if not isinstance(value, str):
        raise DataFileError(f"record {index}: field '{name}' must be a string")
    if required and value.strip() == "":
        raise DataFileError(f"record {index}: field '{name}' is empty")
    return value


def format_record(rec: Record, index: int) -> str:
    instruction = _field(rec, "instruction", index, required=True)
    output = _field(rec, "output", index, required=True)
    extra_input = _field(rec, "input", index, required=False)
    if extra_input.strip():
        return PROMPT_TEMPLATE_WITH_INPUT.format(
            instruction=instruction, input=extra_input, output=output
        )
    return PROMPT_TEMPLATE.format(instruction=instruction, output=output)


def split_texts(
    texts: Sequence[str], *, holdout_fraction: float, seed: int
) -> tuple[list[str], list[str]]:
    shuffled = list(texts)
    random.Random(seed).shuffle(shuffled)
    n = len(shuffled)
    val_n = int(n * holdout_fraction)
    if n == 1:
        return shuffled, list(shuffled)
    if val_n == 0:
        # The trainer needs a validation set; reuse one training example.
        return shuffled, [shuffled[-1]]
    return shuffled[:-val_n], shuffled[-val_n:]


def _write_jsonl(path: Path, texts: Sequence[str]) -> None:
    with path.open("w", encoding="utf-8") as f:
        for t in texts:
            f.write(json.dumps({"text": t}, ensure_ascii=False))
            f.write("\n")


def prepare_dataset(
    records: Sequence[Record],
    out_dir: Path,
    *,
    batch_size: int,
    epochs: int,
    holdout_fraction: float,
    seed: int,
) -> DatasetPlan:
    """Validate records, render prompts and write train/valid splits for the trainer."""
    texts = [format_record(rec, i) for i, rec in enumerate(records, start=1)]
    train, valid = split_texts(texts, holdout_fraction=holdout_fraction, seed=seed)
    if len(train) < batch_size:
        raise DataFileError(
            f"training split has {len(train)} records, fewer than batch size {batch_size}"
        )
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        _write_jsonl(out_dir / "train.jsonl", train)
        _write_jsonl(out_dir / "valid.jsonl", valid)
    except OSError as e:
        raise DataFileError(f"cannot write prepared dataset to {out_dir}: {e}") from e
    steps_per_epoch = max(1, math.ceil(len(train) / batch_size))
    return DatasetPlan(
        data_dir=str(out_dir),
        train_count=len(train),
        valid_count=len(valid),
        steps_per_epoch=steps_per_epoch,
        total_steps=steps_per_epoch * epochs,
    )
