"""
Credit ledger for transcription usage.

Users either spend their one-time free trial or transcription credits (one
credit per transcript page). A job places a hold when it is admitted and the
hold is either settled (credits deducted or free trial consumed) when the job
completes, or released when it fails.

All users live in a single JSON file. Each operation is one conditional
update under a lock followed by an atomic rewrite, so concurrent jobs of the
same user cannot double-spend.
"""

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

from ..errors import FreeTrialFileTooLargeError, InsufficientCreditsError, UserNotFoundError
from ..models import User

logger = logging.getLogger(__name__)

FREE_TRIAL_MAX_BYTES = 10 * 1024 * 1024


class CreditLedger:
    """JSON-file backed user balances."""

    def __init__(self, users_file: str = "server_jobs/users.json"):
        self.users_file = Path(users_file)
        self.users_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def _load(self) -> Dict[str, User]:
        if not self.users_file.exists():
            return {}
        with open(self.users_file, "r", encoding="utf-8") as f:
            return {user_id: User.from_dict(data) for user_id, data in json.load(f).items()}

    def _store(self, users: Dict[str, User]) -> None:
        payload = json.dumps({user_id: user.to_dict() for user_id, user in users.items()}, indent=2)
        fd, tmp_path = tempfile.mkstemp(dir=self.users_file.parent, prefix=".users-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.users_file)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    @contextmanager
    def _update(self, user_id: str) -> Iterator[User]:
        """Load, yield and store one user under the ledger lock."""
        with self._lock:
            users = self._load()
            if user_id not in users:
                raise UserNotFoundError(f"User {user_id} not found")
            yield users[user_id]
            self._store(users)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self._load().get(user_id)

    def ensure_user(self, user_id: str) -> User:
        """Get a user, creating it with a fresh free trial and no credits."""
        with self._lock:
            users = self._load()
            if user_id not in users:
                users[user_id] = User(id=user_id)
                self._store(users)
                logger.info(f"Created ledger entry for user {user_id}")
            return users[user_id]

    def add_credits(self, user_id: str, amount: int) -> User:
        """Add purchased credits (called by the payment webhook)."""
        if amount <= 0:
            raise ValueError("Credit amount must be positive")
        self.ensure_user(user_id)
        with self._update(user_id) as user:
            user.transcription_credits += amount
        logger.info(f"Added {amount} credits to user {user_id}")
        return user

    def resolve_entitlement(self, user_id: str, file_size: int) -> bool:
        """
        Decide how an upload is paid for.

        Returns:
            True when the job runs on the free trial, False when it uses credits

        Raises:
            UserNotFoundError: Unknown user
            InsufficientCreditsError: No free trial left and no credits
            FreeTrialFileTooLargeError: Free-trial upload above 10MB
        """
        user = self.get_user(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")

        if user.free_trial_available:
            if file_size > FREE_TRIAL_MAX_BYTES:
                raise FreeTrialFileTooLargeError("File too large for the free trial (max 10MB)")
            return True

        if user.transcription_credits > 0:
            return False

        raise InsufficientCreditsError("No credits available")

    def place_hold(self, user_id: str, job_id: str, free_trial: bool) -> None:
        """Reserve the user's entitlement for ``job_id`` until it settles or fails."""
        with self._update(user_id) as user:
            if free_trial and not user.free_trial_available:
                raise InsufficientCreditsError("Free trial already in use")
            user.holds[job_id] = free_trial

    def release_hold(self, user_id: str, job_id: str) -> bool:
        """Drop a hold that was never consumed. Returns False if none existed."""
        with self._update(user_id) as user:
            released = user.holds.pop(job_id, None) is not None
        if released:
            logger.info(f"Released hold of job {job_id} for user {user_id}")
        return released

    def deduct_credits(self, user_id: str, amount: int) -> User:
        """
        Deduct ``amount`` credits in one conditional update.

        Raises:
            InsufficientCreditsError: Balance lower than ``amount``
        """
        with self._update(user_id) as user:
            if user.transcription_credits < amount:
                raise InsufficientCreditsError(
                    f"Insufficient credits: {user.transcription_credits} available, {amount} required"
                )
            user.transcription_credits -= amount
        return user

    def mark_free_trial_used(self, user_id: str) -> User:
        with self._update(user_id) as user:
            user.free_transcription_used = True
        return user

    def settle_job(self, user_id: str, job_id: str, page_count: int, free_trial: bool) -> Optional[int]:
        """
        Charge a completed job exactly once.

        Consumes the free trial or deducts ``page_count`` credits, records the
        job as settled and drops its hold, all in one update. A credit job
        whose pages exceed the balance is charged the whole balance; the
        transcript is already paid for in API calls and is kept. Settling an
        already settled job is a no-op.

        Returns:
            Credits charged by this call (0 for a free-trial job), or None if
            the job was already settled
        """
        with self._update(user_id) as user:
            if job_id in user.settled_jobs:
                logger.warning(f"Job {job_id} already settled for user {user_id}")
                return None

            charged = 0
            if free_trial:
                user.free_transcription_used = True
            else:
                charged = min(page_count, user.transcription_credits)
                if charged < page_count:
                    logger.warning(
                        f"Job {job_id} needs {page_count} credits but user {user_id} "
                        f"has {user.transcription_credits}, charging {charged}"
                    )
                user.transcription_credits -= charged

            user.holds.pop(job_id, None)
            user.settled_jobs.append(job_id)

        logger.info(
            f"Settled job {job_id} for user {user_id}: "
            + ("free trial" if free_trial else f"{charged} credits")
        )
        return charged

    def refund_job(self, user_id: str, job_id: str, amount: int, free_trial: bool) -> bool:
        """
        Reverse the settlement of ``job_id``.

        Gives back ``amount`` credits, or the free trial, and forgets the job
        as settled. Returns False if the job was not settled.
        """
        with self._update(user_id) as user:
            if job_id not in user.settled_jobs:
                return False

            user.settled_jobs.remove(job_id)
            if free_trial:
                user.free_transcription_used = False
            else:
                user.transcription_credits += amount

        logger.info(f"Refunded job {job_id} for user {user_id}")
        return True
