"""
Module: approval_kernel.models.chain_template
Responsibility: ORM persistence for approval chain templates and their
    ordered levels, plus the template-side aggregate behaviour: wholesale
    level replacement and snapshotting levels into level decisions.
Architecture position: Kernel > Models.  May import from db/, domain/ and
    exceptions.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    - One template per entity type (uq_chain_template_entity_type).
    - level_order > 0 and unique per template (ck / uq constraints).
    - Sorted level orders are exactly 1..n after every replace_all_levels().
    - Template rows carry an optimistic lock counter (version) so concurrent
      reconfigurations cannot both commit.

Failure modes:
    - NonSequentialLevelOrderError from replace_all_levels() (nothing applied).
    - ChainHasNoLevelsError from create_level_decisions().
    - IntegrityError on duplicate entity type or unknown approver FK.
"""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import TimestampedBase, UUIDString
from approval_kernel.domain.approval import (
    ChainLevel,
    EntityType,
    LevelDecision,
    validate_level_orders,
)
from approval_kernel.exceptions import ChainHasNoLevelsError


class ChainTemplateModel(TimestampedBase):
    """
    Per-entity-type approval chain configuration.

    Contract:
        Levels are replaced wholesale, never edited individually.  Templates
        are never deleted; is_active=False takes one out of service.

    Guarantees:
        - levels is always ordered by level_order.
        - create_level_decisions() never touches the database.
    """

    __tablename__ = "approval_chain_templates"

    __table_args__ = (
        UniqueConstraint("entity_type", name="uq_chain_template_entity_type"),
        CheckConstraint(
            "entity_type IN ('QUOTATION', 'PURCHASE_ORDER')",
            name="ck_chain_template_entity_type",
        ),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)

    levels: Mapped[list["ChainLevelModel"]] = relationship(
        "ChainLevelModel",
        back_populates="template",
        order_by="ChainLevelModel.level_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<ChainTemplate {self.entity_type} levels={len(self.levels)}>"

    @property
    def total_levels(self) -> int:
        return len(self.levels)

    @property
    def has_levels(self) -> bool:
        return bool(self.levels)

    def chain_levels(self) -> list[ChainLevel]:
        """Configured levels as domain values, in order."""
        return [level.to_dto() for level in self.levels]

    def replace_all_levels(self, levels: Sequence[ChainLevel]) -> None:
        """
        Replace the whole level list.

        Preconditions: approver existence has been verified by the caller
            (the model has no identity lookup).
        Raises:
            NonSequentialLevelOrderError: orders are not 1..n.  The
                existing levels are left untouched.
        """
        validate_level_orders(levels)
        incoming = sorted(levels, key=lambda level: level.level_order)

        # Reuse rows by position: both lists are 1..n, so a reused row keeps
        # its level_order and the (template, level_order) key never collides.
        existing = list(self.levels)
        for row, level in zip(existing, incoming):
            row.apply(level)
        for level in incoming[len(existing):]:
            self.levels.append(ChainLevelModel.from_dto(level))
        for row in existing[len(incoming):]:
            self.levels.remove(row)

    def create_level_decisions(self) -> list[LevelDecision]:
        """
        Snapshot the configured levels as PENDING decisions.

        Raises:
            ChainHasNoLevelsError: the template has no levels.
        """
        if not self.levels:
            raise ChainHasNoLevelsError(self.entity_type)
        return [LevelDecision.from_chain_level(level) for level in self.chain_levels()]

    @property
    def entity_type_enum(self) -> EntityType:
        return EntityType(self.entity_type)


class ChainLevelModel(TimestampedBase):
    """One ordered level of a chain template, bound to a single approver."""

    __tablename__ = "approval_chain_levels"

    __table_args__ = (
        UniqueConstraint(
            "template_id", "level_order",
            name="uq_chain_level_template_order",
        ),
        CheckConstraint("level_order > 0", name="ck_chain_level_order_positive"),
        Index("ix_chain_level_approver", "approver_user_id"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_chain_templates.id"),
        nullable=False,
    )
    level_order: Mapped[int] = mapped_column(nullable=False)
    level_name: Mapped[str] = mapped_column(String(100), nullable=False)
    approver_user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )
    is_required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    template: Mapped[ChainTemplateModel] = relationship(
        "ChainTemplateModel",
        back_populates="levels",
    )

    def __repr__(self) -> str:
        return f"<ChainLevel {self.level_order}:{self.level_name}>"

    def apply(self, level: ChainLevel) -> None:
        self.level_order = level.level_order
        self.level_name = level.level_name
        self.approver_user_id = level.approver_user_id
        self.is_required = level.is_required

    def to_dto(self) -> ChainLevel:
        return ChainLevel(
            level_order=self.level_order,
            level_name=self.level_name,
            approver_user_id=self.approver_user_id,
            is_required=self.is_required,
        )

    @classmethod
    def from_dto(cls, level: ChainLevel) -> ChainLevelModel:
        return cls(
            level_order=level.level_order,
            level_name=level.level_name,
            approver_user_id=level.approver_user_id,
            is_required=level.is_required,
        )
