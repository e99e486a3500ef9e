"""
User Service
Registered sweep users: capacity, encrypted recovery phrase, destination
address and activity tracking, persisted in the sweep_users table.
"""

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from handlers.utils import is_valid_evm_address
from services.errors import CapacityError, InvalidAddressError, UserNotFoundError
from wallet.evm import derive_account

logger = logging.getLogger("UserService")


@dataclass
class SweepUser:
    user_id: str
    destination_address: Optional[str]
    has_secret: bool
    created_at: float
    last_active: float

    @property
    def is_setup_complete(self) -> bool:
        return self.has_secret and bool(self.destination_address)


class UserManager:
    # KDF iterations (OWASP recommended minimum)
    KDF_ITERATIONS = 480000

    def __init__(self, db, encryption_key, max_users=3, kdf_iterations=KDF_ITERATIONS):
        self.db = db
        self.encryption_key = encryption_key
        self.max_users = max_users
        self.kdf_iterations = kdf_iterations
        self._fernets = {}

    def _fernet(self, user_id) -> Fernet:
        """Fernet keyed by PBKDF2 over the master key, salted with the user id."""
        f = self._fernets.get(user_id)
        if f is None:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=32,
                salt=f"sweep-user-{user_id}".encode(),
                iterations=self.kdf_iterations,
            )
            f = Fernet(base64.urlsafe_b64encode(kdf.derive(self.encryption_key.encode())))
            self._fernets[user_id] = f
        return f

    @staticmethod
    def _row_to_user(row) -> SweepUser:
        return SweepUser(
            user_id=row[0],
            has_secret=bool(row[1]),
            destination_address=row[2],
            created_at=row[3],
            last_active=row[4],
        )

    # --- Registration ---

    def count_users(self) -> int:
        row = self.db.fetchone("SELECT COUNT(*) FROM sweep_users")
        return int(row[0]) if row else 0

    def get_user(self, user_id) -> Optional[SweepUser]:
        p = self.db.p
        row = self.db.fetchone(
            f"SELECT user_id, encrypted_secret, destination_address, created_at, last_active "
            f"FROM sweep_users WHERE user_id = {p}", (str(user_id),))
        return self._row_to_user(row) if row else None

    def require_user(self, user_id) -> SweepUser:
        user = self.get_user(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} is not registered")
        return user

    def register_user(self, user_id) -> SweepUser:
        """Return the user, registering them first if there is capacity left."""
        user_id = str(user_id)
        user = self.get_user(user_id)
        if user is not None:
            self.update_activity(user_id)
            return user

        if self.count_users() >= self.max_users:
            logger.warning(f"Registration refused for {user_id}: capacity {self.max_users} reached")
            raise CapacityError(f"Maximum number of users ({self.max_users}) reached")

        now = time.time()
        p = self.db.p
        self.db.execute(
            f"INSERT INTO sweep_users (user_id, encrypted_secret, destination_address, created_at, last_active) "
            f"VALUES ({p}, {p}, {p}, {p}, {p})",
            (user_id, None, None, now, now))
        logger.info(f"Registered new user {user_id}")
        return SweepUser(user_id, None, False, now, now)

    # --- Secrets and destination ---

    def set_secret(self, user_id, secret: str):
        """Store the recovery phrase encrypted; raises InvalidSecretError if it cannot derive a wallet."""
        user_id = str(user_id)
        derive_account(secret)
        self.require_user(user_id)
        token = self._fernet(user_id).encrypt(secret.strip().encode()).decode()
        p = self.db.p
        self.db.execute(f"UPDATE sweep_users SET encrypted_secret = {p}, last_active = {p} WHERE user_id = {p}",
                        (token, time.time(), user_id))
        logger.info(f"Stored encrypted recovery phrase for {user_id}")

    def get_secret(self, user_id) -> Optional[str]:
        user_id = str(user_id)
        p = self.db.p
        row = self.db.fetchone(f"SELECT encrypted_secret FROM sweep_users WHERE user_id = {p}", (user_id,))
        if not row or not row[0]:
            return None
        try:
            return self._fernet(user_id).decrypt(row[0].encode()).decode()
        except InvalidToken:
            logger.error(f"Cannot decrypt stored secret for {user_id} (encryption key changed?)")
            return None

    async def set_secret_async(self, user_id, secret: str):
        return await asyncio.to_thread(self.set_secret, user_id, secret)

    async def get_secret_async(self, user_id) -> Optional[str]:
        """Off-loop variant; the first use per user pays for the key derivation."""
        return await asyncio.to_thread(self.get_secret, user_id)

    def set_destination(self, user_id, address: str):
        user_id = str(user_id)
        address = (address or "").strip()
        if not is_valid_evm_address(address):
            raise InvalidAddressError(f"Invalid destination address: {address}")
        self.require_user(user_id)
        p = self.db.p
        self.db.execute(f"UPDATE sweep_users SET destination_address = {p}, last_active = {p} WHERE user_id = {p}",
                        (address, time.time(), user_id))
        logger.info(f"Destination set for {user_id}: {address}")

    # --- Activity ---

    def update_activity(self, user_id):
        p = self.db.p
        self.db.execute(f"UPDATE sweep_users SET last_active = {p} WHERE user_id = {p}", (time.time(), str(user_id)))

    def list_users(self) -> List[SweepUser]:
        rows = self.db.fetchall(
            "SELECT user_id, encrypted_secret, destination_address, created_at, last_active "
            "FROM sweep_users ORDER BY created_at, user_id")
        return [self._row_to_user(r) for r in rows]

    def delete_user(self, user_id) -> bool:
        user_id = str(user_id)
        deleted = self.db.execute(f"DELETE FROM sweep_users WHERE user_id = {self.db.p}", (user_id,)) > 0
        self._fernets.pop(user_id, None)
        if deleted:
            logger.info(f"Deleted user {user_id}")
        return deleted
