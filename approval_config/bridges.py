"""
Config -> Kernel Bridges.

Functions that apply parsed configuration through the kernel's own
commands.  These live in approval_config (the producer) because the
kernel must NEVER import approval_config.

Usage:
    from approval_config.bridges import seed_users, seed_chain_templates

    config = get_active_config()
    with session_scope() as session:
        seed_users(session, config)
        seed_chain_templates(config, ApprovalCommandService(session))
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from approval_config.schema import ApprovalConfiguration, ChainTemplateDef
from approval_kernel.domain.approval import ChainLevel, EntityType
from approval_kernel.domain.identity import UserDirectory
from approval_kernel.exceptions import UserNotFoundError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.user import UserModel
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.services.approval_command_service import ApprovalCommandService
from approval_kernel.services.user_directory import SqlUserDirectory

logger = get_logger("config.bridges")


def seed_users(session: Session, config: ApprovalConfiguration) -> list[UUID]:
    """Create configured users that do not exist yet (matched by username).

    Returns:
        Ids of the users created by this call.
    """
    directory = SqlUserDirectory(session)
    created: list[UUID] = []
    for user_def in config.users:
        if directory.find_user_by_username(user_def.username) is not None:
            continue
        user = UserModel(
            id=uuid4(),
            username=user_def.username,
            display_name=user_def.display_name,
            email=user_def.email,
            is_active=True,
        )
        session.add(user)
        created.append(user.id)
    session.flush()

    logger.info("users_seeded", extra={"users_created": len(created)})
    return created


def build_chain_levels(
    template_def: ChainTemplateDef,
    users: UserDirectory,
) -> list[ChainLevel]:
    """Resolve approver usernames to ids.

    Raises:
        UserNotFoundError: an approver username is unknown.
    """
    levels = []
    for level_def in template_def.levels:
        user = users.find_user_by_username(level_def.approver_username)
        if user is None:
            raise UserNotFoundError(level_def.approver_username)
        levels.append(
            ChainLevel(
                level_order=level_def.level_order,
                level_name=level_def.level_name,
                approver_user_id=user.id,
                is_required=level_def.is_required,
            )
        )
    return levels


def seed_chain_templates(
    config: ApprovalConfiguration,
    service: ApprovalCommandService,
    users: UserDirectory | None = None,
    selector: ApprovalSelector | None = None,
) -> dict[EntityType, UUID]:
    """Create missing chain templates and apply every configured level list.

    Existing templates keep their id and active flag; their levels are
    replaced with the configured ones.

    Returns:
        Template id per entity type.
    """
    users = users or SqlUserDirectory(service.session)
    selector = selector or ApprovalSelector(service.session, users)
    existing = {view.entity_type: view for view in selector.list_chain_templates()}

    seeded: dict[EntityType, UUID] = {}
    for template_def in config.templates:
        entity_type = EntityType(template_def.entity_type)
        levels = build_chain_levels(template_def, users)

        current = existing.get(entity_type)
        if current is None:
            template_id = service.create_chain_template(
                entity_type,
                template_def.name,
                template_def.description,
                levels,
            )
        else:
            template_id = service.update_chain_levels(current.id, levels)
        seeded[entity_type] = template_id

    logger.info(
        "chain_templates_seeded",
        extra={
            "checksum": config.checksum,
            "entity_types": sorted(e.value for e in seeded),
        },
    )
    return seeded
