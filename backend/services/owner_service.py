"""Owner and credential management."""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from models import Credential, Owner
from services.exceptions import ValidationError

logger = logging.getLogger(__name__)


class OwnerService:
    """CRUD for owners plus the pre-sync validation gate."""

    @staticmethod
    def create_owner(
        db: Session,
        name: str,
        display_name: str | None = None,
        yield_on_cost_dividend_only: bool = True,
    ) -> Owner:
        """Create an owner; raises ValidationError if the name is taken."""
        if db.query(Owner).filter_by(name=name).first() is not None:
            raise ValidationError(f"Owner already exists: {name}", owner_name=name)
        owner = Owner(
            name=name,
            display_name=display_name or name,
            yield_on_cost_dividend_only=yield_on_cost_dividend_only,
        )
        db.add(owner)
        db.flush()
        logger.info("Created owner: %s", name)
        return owner

    @staticmethod
    def get_owner(db: Session, name: str) -> Owner | None:
        return db.query(Owner).filter_by(name=name).first()

    @staticmethod
    def list_owners(db: Session, active_only: bool = True) -> list[Owner]:
        query = db.query(Owner)
        if active_only:
            query = query.filter(Owner.is_active.is_(True))
        return query.order_by(Owner.name).all()

    @staticmethod
    def deactivate_owner(db: Session, name: str) -> Owner | None:
        """Soft delete: the owner is kept but excluded from syncs."""
        owner = OwnerService.get_owner(db, name)
        if owner is None:
            return None
        owner.is_active = False
        db.flush()
        logger.info("Deactivated owner: %s", name)
        return owner

    @staticmethod
    def delete_owner(db: Session, name: str) -> bool:
        """Hard delete; accounts, holdings, transactions, snapshots and
        credentials go with it."""
        owner = OwnerService.get_owner(db, name)
        if owner is None:
            return False
        db.delete(owner)
        db.flush()
        logger.info("Deleted owner and all related data: %s", name)
        return True

    @staticmethod
    def add_credential(
        db: Session,
        name: str,
        credential_type: str = "refresh",
        expires_at: datetime | None = None,
    ) -> Credential:
        """Register an active credential, deactivating any previous ones."""
        owner = OwnerService.get_owner(db, name)
        if owner is None:
            raise ValidationError(f"Owner not found: {name}", owner_name=name)
        for existing in owner.credentials:
            existing.is_active = False
        credential = Credential(
            owner_id=owner.id,
            credential_type=credential_type,
            expires_at=expires_at,
            is_active=True,
        )
        db.add(credential)
        db.flush()
        logger.info("Added %s credential for %s", credential_type, name)
        return credential

    @staticmethod
    def get_active_credential(db: Session, owner: Owner) -> Credential | None:
        """Most recent healthy credential for the owner, if any."""
        credentials = (
            db.query(Credential)
            .filter(Credential.owner_id == owner.id, Credential.is_active.is_(True))
            .order_by(Credential.created_at.desc())
            .all()
        )
        for credential in credentials:
            if credential.is_healthy():
                return credential
        return None

    @staticmethod
    def validate_for_sync(db: Session, name: str) -> Owner:
        """Return the owner if it may be synced.

        Raises:
            ValidationError: Owner missing or inactive, or no active credential.
        """
        owner = OwnerService.get_owner(db, name)
        if owner is None:
            raise ValidationError(f"Owner not found: {name}", owner_name=name)
        if not owner.is_active:
            raise ValidationError(f"Owner is inactive: {name}", owner_name=name)
        if OwnerService.get_active_credential(db, owner) is None:
            raise ValidationError(f"No active credential for {name}", owner_name=name)
        return owner
