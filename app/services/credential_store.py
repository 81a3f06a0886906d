"""
Shop credential store

Access tokens for connected shops, keyed by (shop, account).
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List

from sqlalchemy.orm import sessionmaker

from app.models.base import SessionLocal
from app.models.shopify import ShopCredential as ShopCredentialRow
from app.utils.logger import log


@dataclass(frozen=True)
class ShopCredential:
    """Token for one shop under one account"""
    shop_name: str
    account_id: str
    access_token: str

    def is_valid(self) -> bool:
        return bool(self.shop_name and self.shop_name.strip() and self.access_token and self.access_token.strip())


class ShopCredentialStore:
    """Reads and writes shop credentials"""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def list_shop_credentials(self, account_id: str) -> List[ShopCredential]:
        """All shop credentials connected to an account"""
        db = self.session_factory()
        try:
            rows = db.query(ShopCredentialRow).filter(
                ShopCredentialRow.account_id == account_id
            ).order_by(ShopCredentialRow.shop_name).all()

            return [
                ShopCredential(
                    shop_name=row.shop_name,
                    account_id=row.account_id,
                    access_token=row.access_token
                )
                for row in rows
            ]
        finally:
            db.close()

    def save_shop_credential(self, shop_name: str, account_id: str, access_token: str) -> None:
        """Insert the credential, or replace the token if the shop is already connected"""
        db = self.session_factory()
        try:
            row = db.query(ShopCredentialRow).filter(
                ShopCredentialRow.shop_name == shop_name,
                ShopCredentialRow.account_id == account_id
            ).first()

            if row:
                row.access_token = access_token
                row.updated_at = datetime.utcnow()
            else:
                db.add(ShopCredentialRow(
                    shop_name=shop_name,
                    account_id=account_id,
                    access_token=access_token
                ))

            db.commit()
            log.info(f"Saved credential for shop {shop_name} (account {account_id})")

        except Exception as e:
            db.rollback()
            log.error(f"Failed to save shop credential for {shop_name}: {str(e)}")
            raise
        finally:
            db.close()

    def list_account_ids(self) -> List[str]:
        """Every account with at least one connected shop"""
        db = self.session_factory()
        try:
            rows = db.query(ShopCredentialRow.account_id).distinct().order_by(ShopCredentialRow.account_id).all()
            return [row[0] for row in rows]
        finally:
            db.close()
