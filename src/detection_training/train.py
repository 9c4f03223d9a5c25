"""Training entrypoint for detection_training.

Usage:
    python -m detection_training.train data.root=/path/to/dataset
    python -m detection_training.train data.root=... detection.batch_size=16
    python -m detection_training.train data.root=... detection.max_iterations=2000
    python -m detection_training.train data.root=... trainer.checkpoint_interval=250
"""

import sys

import hydra
import lightning as L
from loguru import logger
from omegaconf import DictConfig, OmegaConf

# CRITICAL: import modules with @register decorators BEFORE Hydra parses config
import detection_training.data  # noqa: F401
import detection_training.models  # noqa: F401
from detection_training.config import DetectionConfig
from detection_training.data.source import DataSource
from detection_training.models.base import Model
from detection_training.trainer import DetectionTrainer, TrainerConfig


@hydra.main(version_base=None, config_path="conf", config_name="train_yolo")
def main(cfg: DictConfig) -> None:
    """Run training with the given Hydra config."""
    logger.remove()
    logger.add(sys.stderr, level=cfg.get("log_level", "INFO"))

    logger.info(f"Configuration:\n{OmegaConf.to_yaml(cfg)}")

    L.seed_everything(cfg.get("seed", 42), workers=True)

    source, trainer = build_trainer(cfg)
    result = trainer.fit(source)

    if result.progress:
        last = result.progress[-1]
        logger.info(
            f"Finished at iteration {last.iteration_id} "
            f"with smoothed loss {last.smoothed_loss:.4f}"
        )


def build_trainer(cfg: DictConfig) -> tuple[DataSource, DetectionTrainer]:
    """Instantiate the data source and a trainer for the composed config.

    ``detection.num_classes: -1`` takes the class count from the data source.
    """
    source = hydra.utils.instantiate(cfg.data)

    config = DetectionConfig(**OmegaConf.to_container(cfg.detection, resolve=True))
    if config.num_classes == -1:
        num_classes = getattr(source, "num_classes", None)
        if not num_classes:
            raise ValueError(
                "detection.num_classes is -1 and the data source has no classes"
            )
        config = config.resolved(num_classes=num_classes)
        logger.info(f"Using {num_classes} classes from the training data")

    augmenter = hydra.utils.instantiate(cfg.augmenter)(config=config)
    stage = hydra.utils.instantiate(cfg.stage)(config=config)
    model = Model(augmenter, stage)

    trainer_config = TrainerConfig(**OmegaConf.to_container(cfg.trainer, resolve=True))
    return source, DetectionTrainer(model, config, trainer_config)


if __name__ == "__main__":
    main()
