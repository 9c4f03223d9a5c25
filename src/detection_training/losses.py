"""Loss functions for object-detection training."""

from __future__ import annotations

from collections.abc import Sequence

import torch
import torch.nn as nn
import torch.nn.functional as F

_EPS = 1e-6


class YOLOLoss(nn.Module):
    """Single-scale YOLO loss over an anchor grid.

    Predictions and labels share the layout ``(B, H, W, A, 5 + C)``.  Label
    slots are ``[x, y, w, h, objectness, one_hot(class)]`` with ``x``/``y`` the
    box centre offset inside its cell and ``w``/``h`` in grid cells.
    Prediction slots are raw logits: sigmoid offsets for ``x``/``y`` and
    log-scale factors of the anchor for ``w``/``h``.

    Parameters
    ----------
    anchors:
        ``A`` anchor sizes ``(w, h)`` in grid cells.
    coord_scale:
        Weight of the box regression terms.
    object_scale:
        Weight of the objectness term for responsible anchors.
    noobject_scale:
        Weight of the objectness term for all other anchors.
    class_scale:
        Weight of the classification term.
    """

    anchors: torch.Tensor

    def __init__(
        self,
        anchors: Sequence[tuple[float, float]],
        coord_scale: float = 5.0,
        object_scale: float = 1.0,
        noobject_scale: float = 0.5,
        class_scale: float = 1.0,
    ) -> None:
        super().__init__()
        self.register_buffer("anchors", torch.tensor(anchors, dtype=torch.float32))
        self.coord_scale = coord_scale
        self.object_scale = object_scale
        self.noobject_scale = noobject_scale
        self.class_scale = class_scale

    def forward(self, predictions: torch.Tensor, labels: torch.Tensor) -> torch.Tensor:
        """Compute the loss of every image in the batch.

        Returns
        -------
        torch.Tensor
            Loss per image, shape ``(B,)``.
        """
        if predictions.shape != labels.shape:
            msg = (
                f"predictions {tuple(predictions.shape)} and labels "
                f"{tuple(labels.shape)} must have the same shape"
            )
            raise ValueError(msg)
        obj_mask = labels[..., 4]

        xy_loss = (torch.sigmoid(predictions[..., 0:2]) - labels[..., 0:2]).pow(2).sum(-1)
        target_wh = torch.log(labels[..., 2:4].clamp(min=_EPS) / self.anchors)
        wh_loss = (predictions[..., 2:4] - target_wh).pow(2).sum(-1)
        coord_loss = self.coord_scale * obj_mask * (xy_loss + wh_loss)

        conf_loss = F.binary_cross_entropy_with_logits(
            predictions[..., 4], obj_mask, reduction="none"
        )
        conf_loss = (
            self.object_scale * obj_mask + self.noobject_scale * (1.0 - obj_mask)
        ) * conf_loss

        num_classes = labels.shape[-1] - 5
        class_loss = F.cross_entropy(
            predictions[..., 5:].reshape(-1, num_classes),
            labels[..., 5:].argmax(-1).reshape(-1),
            reduction="none",
        ).reshape(obj_mask.shape)
        class_loss = self.class_scale * obj_mask * class_loss

        return (coord_loss + conf_loss + class_loss).flatten(1).sum(1)
