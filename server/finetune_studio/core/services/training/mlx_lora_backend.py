from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Final

from ...contracts.trainer import DatasetPlan, StepReport
from ...contracts.training import TrainingConfiguration

_TRAIN_LOSS_RE: Final[re.Pattern[str]] = re.compile(
    r"^Iter\s+(\d+):\s+Train loss\s+([-+0-9.eE]+|nan|inf)", re.IGNORECASE
)
_GEN_SEPARATOR: Final[str] = "=========="

_logger: Final[logging.Logger] = logging.getLogger(__name__)

ADAPTER_WEIGHTS: Final[str] = "adapters.safetensors"
ADAPTER_CONFIG: Final[str] = "adapter_config.json"


class MLXLoraBackend:
    """LoRA fine-tuning through the ``mlx_lm`` command-line tools.

    Reports are requested once per epoch (``--steps-per-report`` equals the number
    of steps in an epoch), so every train-loss line marks an epoch boundary.
    """

    def __init__(self: MLXLoraBackend, python_executable: str) -> None:
        self._python = python_executable

    def name(self: MLXLoraBackend) -> str:
        return "mlx-lora"

    def train_command(
        self: MLXLoraBackend,
        cfg: TrainingConfiguration,
        *,
        model_path: str,
        plan: DatasetPlan,
        adapter_dir: Path,
        seed: int,
    ) -> list[str]:
        save_every = plan.steps_per_epoch if cfg.save_checkpoints else plan.total_steps
        return [
            self._python,
            "-u",
            "-m",
            "mlx_lm.lora",
            "--model",
            model_path,
            "--train",
            "--data",
            plan.data_dir,
            "--adapter-path",
            str(adapter_dir),
            "--iters",
            str(plan.total_steps),
            "--batch-size",
            str(cfg.batch_size),
            "--learning-rate",
            f"{cfg.learning_rate:g}",
            "--max-seq-length",
            str(cfg.max_sequence_length),
            "--steps-per-report",
            str(plan.steps_per_epoch),
            "--steps-per-eval",
            str(plan.total_steps),
            "--save-every",
            str(save_every),
            "--seed",
            str(seed),
        ]

    def parse_progress(self: MLXLoraBackend, line: str) -> StepReport | None:
        m = _TRAIN_LOSS_RE.match(line.strip())
        if m is None:
            return None
        try:
            loss = float(m.group(2).rstrip(",."))
        except ValueError:
            _logger.debug("unparseable loss in trainer output: %s", line.strip())
            return None
        return StepReport(step=int(m.group(1)), loss=loss)

    def saved_files(self: MLXLoraBackend, adapter_dir: Path) -> list[Path]:
        weights = adapter_dir / ADAPTER_WEIGHTS
        if not weights.is_file():
            return []
        out = [weights]
        cfg = adapter_dir / ADAPTER_CONFIG
        if cfg.is_file():
            out.append(cfg)
        return out

    def generate_command(
        self: MLXLoraBackend,
        *,
        model_path: str,
        adapter_dir: Path,
        prompt: str,
        max_tokens: int,
    ) -> list[str]:
        return [
            self._python,
            "-m",
            "mlx_lm.generate",
            "--model",
            model_path,
            "--adapter-path",
            str(adapter_dir),
            "--prompt",
            prompt,
            "--max-tokens",
            str(max_tokens),
        ]

    def parse_generation(self: MLXLoraBackend, output: str) -> str:
        lines = output.splitlines()
        marks = [i for i, ln in enumerate(lines) if ln.strip() == _GEN_SEPARATOR]
        if len(marks) >= 2:
            return "\n".join(lines[marks[0] + 1 : marks[1]]).strip()
        return output.strip()
