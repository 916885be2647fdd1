import random
from typing import Sequence, TypeVar

from shared.helper.HelperConfig import HelperConfig
from shared.models.patch import Patch
from shared.models.result import PatchSelection

T = TypeVar("T")


def sample_without_replacement(items: Sequence[T], n: int, rng: random.Random) -> list[T]:
    """Draw up to n items uniformly at random without replacement (swap-and-pop on a copy).

    Args:
        items (Sequence[T]): Population. Never mutated.
        n (int): Number of items to draw.
        rng (random.Random): Random source.

    Returns:
        list[T]: The drawn items; all of them (in input order) when len(items) <= n.
    """
    if len(items) <= n:
        return list(items)
    pool = list(items)
    drawn: list[T] = []
    while len(drawn) < n:
        idx = rng.randrange(len(pool))
        pool[idx], pool[-1] = pool[-1], pool[idx]
        drawn.append(pool.pop())
    return drawn


class PatchSelector:
    """Stratified sampler that spreads the processed patches across the whole quilt."""

    def __init__(self, helper_config: HelperConfig, rng: random.Random | None = None):
        self.logging = helper_config.get_logger()
        self._rng = rng or random.Random()

    def select(self, patches: list[Patch], group_size: int = 100, per_group: int = 30) -> PatchSelection:
        """Split the patches into contiguous groups and draw a fixed quota from each.

        Args:
            patches (list[Patch]): All patches of the quilt, in listing order.
            group_size (int): Size of each contiguous group (the last one may be shorter).
            per_group (int): Number of patches drawn from each group.

        Returns:
            PatchSelection: The selected patches, group order preserved, plus counts.
        """
        group_size = max(1, int(group_size))
        groups = [patches[i:i + group_size] for i in range(0, len(patches), group_size)]
        self.logging.info("Grouped %d patches into %d groups of up to %d patches each", len(patches), len(groups), group_size)

        selected: list[Patch] = []
        for i, group in enumerate(groups):
            picked = sample_without_replacement(group, min(per_group, len(group)), self._rng)
            selected.extend(picked)
            self.logging.debug("Group %d (%d patches): selected %d patches", i + 1, len(group), len(picked))

        self.logging.info(
            "Selected %d of %d patches (%d per group of %d), skipping %d",
            len(selected),
            len(patches),
            per_group,
            group_size,
            len(patches) - len(selected),
        )
        return PatchSelection(selected=selected, original_count=len(patches), selected_count=len(selected))
