from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from releaseflow.core.exceptions import ConfigurationError
from releaseflow.models.categories import Category
from releaseflow.models.config_node import ConfigNode


class HandlerEntry(BaseModel):
    """Configuration of one handler.

    Known keys drive selection; every other key is passed to the adapter as
    a setting (e.g. ``command``, ``timeout``).
    """

    model_config = ConfigDict(extra="allow")

    enabled: Optional[bool] = None
    type: Optional[str] = None      # overrides the mapping key as type id
    adapter: Optional[str] = None   # registry key, defaults to the type id

    def settings(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    def to_node(
        self,
        *,
        key: str,
        category: Category,
        type_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> ConfigNode:
        return ConfigNode(
            key=key,
            category=category,
            type_id=self.type or type_id or key,
            name=name,
            enabled=self.enabled,
            adapter=self.adapter,
            settings=self.settings(),
        )


def _entries(raw: Dict[str, Any], where: str) -> Dict[str, HandlerEntry]:
    entries: Dict[str, HandlerEntry] = {}
    for key, value in raw.items():
        if value is None:
            value = {}
        if not isinstance(value, dict):
            raise ValueError(f"{where}.{key} must be a mapping, got {type(value).__name__}")
        entries[key] = HandlerEntry.model_validate(value)
    return entries


class AnnounceConfig(BaseModel):
    """``announce`` section: one entry per announcer type."""

    model_config = ConfigDict(extra="allow")

    enabled: Optional[bool] = None

    @model_validator(mode="after")
    def _validate_entries(self) -> "AnnounceConfig":
        _entries(self.model_extra or {}, "announce")
        return self

    def announcers(self) -> Dict[str, HandlerEntry]:
        return _entries(self.model_extra or {}, "announce")


class NamedHandlersConfig(BaseModel):
    """Section where each type holds several named instances.

    Example (``upload``)::

        upload:
          artifactory:
            main: {command: "..."}
            mirror: {enabled: false}
    """

    model_config = ConfigDict(extra="allow")

    enabled: Optional[bool] = None

    @model_validator(mode="after")
    def _validate_instances(self) -> "NamedHandlersConfig":
        self.instances()
        return self

    def instances(self) -> Dict[str, Dict[str, HandlerEntry]]:
        result: Dict[str, Dict[str, HandlerEntry]] = {}
        for type_id, named in (self.model_extra or {}).items():
            if named is None:
                named = {}
            if not isinstance(named, dict):
                raise ValueError(f"{type_id} must map instance names to handler settings")
            result[type_id] = _entries(named, type_id)
        return result


class DeployConfig(BaseModel):
    enabled: Optional[bool] = None
    maven: NamedHandlersConfig = Field(default_factory=NamedHandlersConfig)


class DistributionConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    enabled: Optional[bool] = None
    type: str = "java-binary"
    adapter: Optional[str] = None
    packagers: Dict[str, HandlerEntry] = Field(default_factory=dict)


class ProjectConfig(BaseModel):
    name: str
    version: Optional[str] = None


class ReleaseConfig(BaseModel):
    """Release document as loaded from JSON/YAML.

    ``packagers`` holds defaults merged into the packager of the same type of
    every distribution; values set on the distribution win.
    """

    project: ProjectConfig
    distributions: Dict[str, DistributionConfig] = Field(default_factory=dict)
    packagers: Dict[str, HandlerEntry] = Field(default_factory=dict)
    deploy: DeployConfig = Field(default_factory=DeployConfig)
    upload: NamedHandlersConfig = Field(default_factory=NamedHandlersConfig)
    announce: AnnounceConfig = Field(default_factory=AnnounceConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReleaseConfig":
        """Validate a raw document; schema problems surface as ``ConfigurationError``."""
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(
                "Invalid release configuration",
                details={"errors": [f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors()]},
            ) from exc

    def _distribution_node(self, name: str, dist: DistributionConfig) -> ConfigNode:
        packager_nodes: List[ConfigNode] = []
        for packager_type in list(self.packagers) + [t for t in dist.packagers if t not in self.packagers]:
            qualified = f"{name}-{packager_type}"
            node: Optional[ConfigNode] = None
            if packager_type in self.packagers:
                node = self.packagers[packager_type].to_node(
                    key=packager_type, category=Category.PACKAGER, name=qualified
                )
            if packager_type in dist.packagers:
                local = dist.packagers[packager_type].to_node(
                    key=packager_type, category=Category.PACKAGER, name=qualified
                )
                node = local if node is None else node.merge(local)
            packager_nodes.append(node)

        return ConfigNode(
            key=name,
            category=Category.DISTRIBUTION,
            type_id=dist.type,
            name=name,
            enabled=dist.enabled,
            adapter=dist.adapter,
            settings=dict(dist.model_extra or {}),
            children=tuple(packager_nodes),
        )

    @staticmethod
    def _named_group(key: str, category: Category, section: NamedHandlersConfig) -> ConfigNode:
        type_groups = []
        for type_id, named in section.instances().items():
            handlers = tuple(
                entry.to_node(key=instance, category=category, type_id=type_id, name=instance)
                for instance, entry in named.items()
            )
            type_groups.append(ConfigNode(key=type_id, category=category, children=handlers))
        return ConfigNode(key=key, category=category, enabled=section.enabled, children=tuple(type_groups))

    def build_tree(self) -> ConfigNode:
        """Build and validate the configuration tree for this document."""
        try:
            tree = self._build_tree()
        except ValidationError as exc:
            raise ConfigurationError(
                "Invalid configuration node",
                details={"errors": [e["msg"] for e in exc.errors()]},
            ) from exc
        tree.validate_tree()
        return tree

    def _build_tree(self) -> ConfigNode:
        distributions = ConfigNode(
            key="distributions",
            category=Category.DISTRIBUTION,
            children=tuple(self._distribution_node(n, d) for n, d in self.distributions.items()),
        )
        deploy = ConfigNode(
            key="deploy",
            category=Category.DEPLOYER,
            enabled=self.deploy.enabled,
            children=(self._named_group("maven", Category.DEPLOYER, self.deploy.maven),),
        )
        upload = self._named_group("upload", Category.UPLOADER, self.upload)
        announce = ConfigNode(
            key="announce",
            category=Category.ANNOUNCER,
            enabled=self.announce.enabled,
            children=tuple(
                entry.to_node(key=key, category=Category.ANNOUNCER)
                for key, entry in self.announce.announcers().items()
            ),
        )

        return ConfigNode(key="release", children=(distributions, deploy, upload, announce))
