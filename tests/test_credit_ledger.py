"""Unit tests for the credit ledger."""

import threading

import pytest

from transcritor.errors import FreeTrialFileTooLargeError, InsufficientCreditsError, UserNotFoundError
from transcritor.server.credit_ledger import FREE_TRIAL_MAX_BYTES, CreditLedger


class TestEntitlement:
    def test_unknown_user(self, ledger):
        with pytest.raises(UserNotFoundError):
            ledger.resolve_entitlement("ghost", 1024)

    def test_new_user_gets_free_trial(self, ledger):
        ledger.ensure_user("ana")
        assert ledger.resolve_entitlement("ana", 1024) is True

    def test_free_trial_size_ceiling(self, ledger):
        ledger.ensure_user("ana")
        assert ledger.resolve_entitlement("ana", FREE_TRIAL_MAX_BYTES) is True
        with pytest.raises(FreeTrialFileTooLargeError):
            ledger.resolve_entitlement("ana", FREE_TRIAL_MAX_BYTES + 1)

    def test_no_trial_and_no_credits(self, ledger):
        ledger.ensure_user("ana")
        ledger.mark_free_trial_used("ana")
        with pytest.raises(InsufficientCreditsError):
            ledger.resolve_entitlement("ana", 1024)

    def test_paid_user_uses_credits(self, ledger):
        ledger.add_credits("ana", 5)
        ledger.mark_free_trial_used("ana")
        assert ledger.resolve_entitlement("ana", 50 * 1024 * 1024) is False

    def test_held_free_trial_is_not_available_twice(self, ledger):
        ledger.ensure_user("ana")
        ledger.place_hold("ana", "job-1", free_trial=True)

        with pytest.raises(InsufficientCreditsError):
            ledger.resolve_entitlement("ana", 1024)
        with pytest.raises(InsufficientCreditsError):
            ledger.place_hold("ana", "job-2", free_trial=True)


class TestHoldsAndSettlement:
    def test_settle_credit_job_deducts_pages(self, ledger):
        ledger.add_credits("ana", 10)
        ledger.mark_free_trial_used("ana")
        ledger.place_hold("ana", "job-1", free_trial=False)

        assert ledger.settle_job("ana", "job-1", page_count=4, free_trial=False) == 4

        user = ledger.get_user("ana")
        assert user.transcription_credits == 6
        assert user.holds == {}
        assert user.settled_jobs == ["job-1"]

    def test_settle_is_idempotent(self, ledger):
        ledger.add_credits("ana", 10)
        ledger.place_hold("ana", "job-1", free_trial=False)

        assert ledger.settle_job("ana", "job-1", page_count=4, free_trial=False) == 4
        assert ledger.settle_job("ana", "job-1", page_count=4, free_trial=False) is None

        assert ledger.get_user("ana").transcription_credits == 6

    def test_settle_free_trial_consumes_it(self, ledger):
        ledger.ensure_user("ana")
        ledger.place_hold("ana", "job-1", free_trial=True)

        assert ledger.settle_job("ana", "job-1", page_count=3, free_trial=True) == 0

        user = ledger.get_user("ana")
        assert user.free_transcription_used is True
        assert user.transcription_credits == 0
        assert user.free_trial_available is False

    def test_settle_charges_at_most_the_balance(self, ledger):
        ledger.add_credits("ana", 2)
        ledger.place_hold("ana", "job-1", free_trial=False)

        assert ledger.settle_job("ana", "job-1", page_count=3, free_trial=False) == 2

        user = ledger.get_user("ana")
        assert user.transcription_credits == 0
        assert user.settled_jobs == ["job-1"]
        assert user.holds == {}

    def test_refund_restores_credits(self, ledger):
        ledger.add_credits("ana", 10)
        ledger.settle_job("ana", "job-1", page_count=4, free_trial=False)

        assert ledger.refund_job("ana", "job-1", 4, free_trial=False) is True
        assert ledger.refund_job("ana", "job-1", 4, free_trial=False) is False

        user = ledger.get_user("ana")
        assert user.transcription_credits == 10
        assert user.settled_jobs == []

    def test_refund_restores_free_trial(self, ledger):
        ledger.ensure_user("ana")
        ledger.settle_job("ana", "job-1", page_count=1, free_trial=True)

        ledger.refund_job("ana", "job-1", 0, free_trial=True)

        assert ledger.get_user("ana").free_trial_available is True

    def test_release_hold_restores_free_trial(self, ledger):
        ledger.ensure_user("ana")
        ledger.place_hold("ana", "job-1", free_trial=True)

        assert ledger.release_hold("ana", "job-1") is True
        assert ledger.release_hold("ana", "job-1") is False
        assert ledger.get_user("ana").free_trial_available is True

    def test_deduct_credits(self, ledger):
        ledger.add_credits("ana", 3)
        assert ledger.deduct_credits("ana", 2).transcription_credits == 1
        with pytest.raises(InsufficientCreditsError):
            ledger.deduct_credits("ana", 2)
        assert ledger.get_user("ana").transcription_credits == 1

    def test_add_credits_rejects_non_positive(self, ledger):
        with pytest.raises(ValueError):
            ledger.add_credits("ana", 0)

    def test_concurrent_deductions_never_overspend(self, ledger):
        ledger.add_credits("ana", 5)
        failures = []

        def deduct():
            try:
                ledger.deduct_credits("ana", 1)
            except InsufficientCreditsError:
                failures.append(1)

        threads = [threading.Thread(target=deduct) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert ledger.get_user("ana").transcription_credits == 0
        assert len(failures) == 3

    def test_state_survives_reload(self, ledger):
        ledger.add_credits("ana", 7)
        reloaded = CreditLedger(str(ledger.users_file))
        assert reloaded.get_user("ana").transcription_credits == 7
