"""
Approval configuration schema.

The human-authored, reviewable configuration artifact: runtime settings
plus the users and chain templates to seed.  YAML files are parsed into
these frozen types by the loader.  Approvers are referenced by username,
never by id, so a configuration file is portable between databases.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ApprovalSettings:
    """Runtime settings for engine and logging initialization."""

    database_url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    log_level: str = "INFO"


@dataclass(frozen=True)
class UserDef:
    """A user to create when seeding an empty database."""

    username: str
    display_name: str
    email: str | None = None


@dataclass(frozen=True)
class ChainLevelDef:
    level_order: int
    level_name: str
    approver_username: str
    is_required: bool = True


@dataclass(frozen=True)
class ChainTemplateDef:
    """Seed definition of one entity type's approval chain."""

    entity_type: str
    name: str
    description: str | None = None
    levels: tuple[ChainLevelDef, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ApprovalConfiguration:
    """Complete parsed configuration with its source checksum."""

    settings: ApprovalSettings
    users: tuple[UserDef, ...]
    templates: tuple[ChainTemplateDef, ...]
    checksum: str

    def template_for(self, entity_type: str) -> ChainTemplateDef | None:
        for template in self.templates:
            if template.entity_type == entity_type:
                return template
        return None
