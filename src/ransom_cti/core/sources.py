"""
Source registry for ransom-cti.

To add a new feed:
1. Create an adapter module in ransom_cti.sources exposing SOURCE_NAME,
   fetch_groups() and build_claims()
2. Register it in SOURCE_REGISTRY below
3. The pipeline and scheduler will pick it up
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ransom_cti.core.models import ActorSeed, RawClaim
from ransom_cti.sources import ransomlook, ransomware_live, ransomwatch


@dataclass(frozen=True)
class FeedAdapter:
    name: str
    build_claims: Callable[..., List[RawClaim]]
    fetch_groups: Optional[Callable[..., List[ActorSeed]]] = None


def _adapter(module) -> FeedAdapter:
    return FeedAdapter(
        name=module.SOURCE_NAME,
        build_claims=module.build_claims,
        fetch_groups=getattr(module, "fetch_groups", None),
    )


SOURCE_REGISTRY: Dict[str, FeedAdapter] = {
    adapter.name: adapter
    for adapter in (
        _adapter(ransomware_live),
        _adapter(ransomlook),
        _adapter(ransomwatch),
    )
}


def get_source_names() -> List[str]:
    """Get list of all registered source names."""
    return list(SOURCE_REGISTRY.keys())


def get_adapter(source_name: str) -> Optional[FeedAdapter]:
    """Get the adapter for a source, or None if it is not registered."""
    return SOURCE_REGISTRY.get(source_name)
