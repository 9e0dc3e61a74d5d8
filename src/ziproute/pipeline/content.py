from __future__ import annotations


class StaticContentCatalog:
    """Published plan counts per city slug, read from ``settings.yaml``."""

    def __init__(self, counts: dict[str, int] | None = None, default: int = 15):
        self.counts = dict(counts or {})
        self.default = default

    @classmethod
    def from_yaml(cls, yaml_config: dict, default: int = 15) -> StaticContentCatalog:
        content = yaml_config.get("content", {}) or {}
        return cls(content.get("counts", {}), content.get("default", default))

    async def count_for(self, city_slug: str) -> int:
        return int(self.counts.get(city_slug, self.default))
