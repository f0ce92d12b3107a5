"""ENIConfig custom resource types."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


def _require_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _require_mapping(data: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"field {key!r} must be an object")
    return dict(value)


@dataclass
class ENIConfigSpec:
    """Security groups and subnet that pod ENIs should use."""

    security_groups: list[str] = field(default_factory=list)
    subnet: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ENIConfigSpec:
        """Build a spec from its JSON form."""
        if not isinstance(data, Mapping):
            raise ValueError("ENIConfig spec must be an object")
        groups = data.get("securityGroups")
        if groups is None:
            groups = []
        if not isinstance(groups, list) or not all(isinstance(g, str) for g in groups):
            raise ValueError("field 'securityGroups' must be a list of strings")
        return cls(security_groups=list(groups), subnet=_require_str(data, "subnet"))

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form of the spec."""
        return {"securityGroups": list(self.security_groups), "subnet": self.subnet}


@dataclass
class ENIConfig:
    """An ENIConfig resource: type metadata, object metadata, spec and status."""

    spec: ENIConfigSpec = field(default_factory=ENIConfigSpec)
    metadata: dict[str, Any] = field(default_factory=dict)
    api_version: str = ""
    kind: str = ""
    status: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        """The resource name from its metadata, or an empty string."""
        return str(self.metadata.get("name", ""))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ENIConfig:
        """Build a resource from its JSON form."""
        if not isinstance(data, Mapping):
            raise ValueError("ENIConfig must be an object")
        spec_data = data.get("spec")
        spec = ENIConfigSpec() if spec_data is None else ENIConfigSpec.from_dict(spec_data)
        return cls(
            spec=spec,
            metadata=_require_mapping(data, "metadata"),
            api_version=_require_str(data, "apiVersion"),
            kind=_require_str(data, "kind"),
            status=_require_mapping(data, "status"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form; empty apiVersion and kind are left out."""
        result: dict[str, Any] = {}
        if self.api_version:
            result["apiVersion"] = self.api_version
        if self.kind:
            result["kind"] = self.kind
        result["metadata"] = dict(self.metadata)
        result["spec"] = self.spec.to_dict()
        result["status"] = dict(self.status)
        return result