"""
Unit tests for StatusLedger

Covers confirmation rules, description editing and the processing lease.
"""

import pytest

from models import Image, MediaStatus, Track
from pipeline.artifact_store import ArtifactStore
from pipeline.error_handler import (
    GenerationInProgressError,
    OwnershipError,
    PreconditionError,
    ValidationError,
)
from pipeline.ledger import StatusLedger


@pytest.fixture
def ledger(db):
    return StatusLedger(db)


@pytest.fixture
def scene(make_project, make_scenes):
    project = make_project()
    return make_scenes(project, 1)[0]


class TestReadAndSetStatus:

    def test_read_returns_snapshot(self, ledger, principal, scene):
        snapshot = ledger.read(principal, scene.id)
        assert snapshot.scene_id == scene.id
        assert snapshot.image.status == MediaStatus.PENDING
        assert snapshot.video.status == MediaStatus.PENDING
        assert snapshot.description_confirmed is False

    def test_set_status_records_error_only_for_failed(self, ledger, principal, scene):
        snapshot = ledger.set_status(principal, scene.id, Track.IMAGE, MediaStatus.FAILED, "boom")
        assert snapshot.image.error == "boom"

        snapshot = ledger.set_status(principal, scene.id, Track.IMAGE, MediaStatus.PENDING, "ignored")
        assert snapshot.image.status == MediaStatus.PENDING
        assert snapshot.image.error is None

    def test_set_status_rejects_unknown_status(self, ledger, principal, scene):
        with pytest.raises(ValidationError):
            ledger.set_status(principal, scene.id, Track.IMAGE, "queued")

    def test_other_principal_sees_not_found(self, ledger, other_principal, scene):
        with pytest.raises(OwnershipError):
            ledger.read(other_principal, scene.id)
        with pytest.raises(OwnershipError):
            ledger.set_status(other_principal, scene.id, Track.IMAGE, MediaStatus.FAILED)


class TestConfirmation:

    def test_confirm_requires_completed(self, ledger, principal, scene):
        with pytest.raises(PreconditionError):
            ledger.set_confirmed(principal, scene.id, Track.IMAGE)
        assert ledger.read(principal, scene.id).image.confirmed is False

    def test_confirm_completed_track(self, ledger, principal, scene):
        ledger.set_status(principal, scene.id, Track.IMAGE, MediaStatus.COMPLETED)
        snapshot = ledger.set_confirmed(principal, scene.id, Track.IMAGE)
        assert snapshot.image.confirmed is True

    def test_confirm_is_idempotent(self, ledger, principal, scene):
        ledger.set_status(principal, scene.id, Track.VIDEO, MediaStatus.COMPLETED)
        ledger.set_confirmed(principal, scene.id, Track.VIDEO)

        snapshot = ledger.set_confirmed(principal, scene.id, Track.VIDEO)
        assert snapshot.video.confirmed is True

    def test_confirm_description_is_idempotent(self, ledger, principal, scene):
        ledger.confirm_description(principal, scene.id)
        snapshot = ledger.confirm_description(principal, scene.id)
        assert snapshot.description_confirmed is True


class TestUpdateDescription:

    def test_update_unconfirmed(self, ledger, principal, scene):
        updated = ledger.update_description(principal, scene.id, "A storm rolls in")
        assert updated.description == "A storm rolls in"

    def test_update_confirmed_rejected(self, ledger, principal, scene):
        ledger.confirm_description(principal, scene.id)
        with pytest.raises(PreconditionError):
            ledger.update_description(principal, scene.id, "Too late")

    def test_update_empty_rejected(self, ledger, principal, scene):
        with pytest.raises(ValidationError):
            ledger.update_description(principal, scene.id, "   ")


class TestGenerationLease:

    def test_begin_moves_to_processing_and_bumps_lease(self, ledger, principal, scene):
        lease = ledger.begin_generation(principal, scene.id, Track.IMAGE)

        snapshot = ledger.read(principal, scene.id)
        assert lease == 1
        assert snapshot.image.status == MediaStatus.PROCESSING
        assert snapshot.image.lease == 1

    def test_second_trigger_is_rejected(self, ledger, principal, scene):
        ledger.begin_generation(principal, scene.id, Track.IMAGE)
        with pytest.raises(GenerationInProgressError):
            ledger.begin_generation(principal, scene.id, Track.IMAGE)

    def test_tracks_are_independent(self, ledger, principal, scene):
        ledger.begin_generation(principal, scene.id, Track.IMAGE)
        assert ledger.begin_generation(principal, scene.id, Track.VIDEO) == 1

    def test_lost_swap_is_rejected(self, ledger, principal, scene, db):
        # Another request wins the swap between our read and our write
        original_refresh = db.refresh
        calls = {"n": 0}

        def refresh_then_race(obj, *args, **kwargs):
            original_refresh(obj, *args, **kwargs)
            calls["n"] += 1
            if calls["n"] == 1:
                db.execute(
                    scene.__table__.update()
                    .where(scene.__table__.c.id == scene.id)
                    .values(image_lease=5)
                )
                db.commit()

        db.refresh = refresh_then_race
        try:
            with pytest.raises(GenerationInProgressError):
                ledger.begin_generation(principal, scene.id, Track.IMAGE)
        finally:
            db.refresh = original_refresh

        assert ledger.read(principal, scene.id).image.status == MediaStatus.PENDING

    def test_disallowed_start_status(self, ledger, principal, scene):
        ledger.set_status(principal, scene.id, Track.IMAGE, MediaStatus.COMPLETED)
        with pytest.raises(PreconditionError):
            ledger.begin_generation(
                principal, scene.id, Track.IMAGE, allowed_from=(MediaStatus.PENDING, MediaStatus.FAILED)
            )

    def test_begin_clears_confirmed_and_error(self, ledger, principal, scene):
        ledger.set_status(principal, scene.id, Track.IMAGE, MediaStatus.COMPLETED)
        ledger.set_confirmed(principal, scene.id, Track.IMAGE)

        ledger.begin_generation(principal, scene.id, Track.IMAGE)

        snapshot = ledger.read(principal, scene.id)
        assert snapshot.image.confirmed is False
        assert snapshot.image.error is None

    def test_finish_with_current_lease(self, ledger, principal, scene):
        lease = ledger.begin_generation(principal, scene.id, Track.IMAGE)
        assert ledger.finish_generation(scene.id, Track.IMAGE, lease, MediaStatus.FAILED, "vendor said no")

        snapshot = ledger.read(principal, scene.id)
        assert snapshot.image.status == MediaStatus.FAILED
        assert snapshot.image.error == "vendor said no"

    def test_finish_with_stale_lease_is_ignored(self, ledger, principal, scene):
        old = ledger.begin_generation(principal, scene.id, Track.IMAGE)
        ledger.finish_generation(scene.id, Track.IMAGE, old, MediaStatus.FAILED, "first")
        ledger.begin_generation(principal, scene.id, Track.IMAGE)

        assert ledger.finish_generation(scene.id, Track.IMAGE, old, MediaStatus.COMPLETED) is False
        assert ledger.read(principal, scene.id).image.status == MediaStatus.PROCESSING

    def test_stale_finish_rolls_back_pending_artifact(self, ledger, principal, scene, db):
        old = ledger.begin_generation(principal, scene.id, Track.IMAGE)
        ledger.finish_generation(scene.id, Track.IMAGE, old, MediaStatus.FAILED, "first")
        ledger.begin_generation(principal, scene.id, Track.IMAGE)
        ArtifactStore(db).create_artifact(
            principal, scene.id, Track.IMAGE, commit=False, storage_path="p/s/images/v1.png", url="http://x"
        )

        assert ledger.finish_generation(scene.id, Track.IMAGE, old, MediaStatus.COMPLETED) is False
        assert db.query(Image).count() == 0

    def test_finish_rejects_non_terminal(self, ledger, principal, scene):
        lease = ledger.begin_generation(principal, scene.id, Track.IMAGE)
        with pytest.raises(ValidationError):
            ledger.finish_generation(scene.id, Track.IMAGE, lease, MediaStatus.PENDING)

    def test_finish_reconciliation_uses_current_lease(self, ledger, principal, scene):
        ledger.begin_generation(principal, scene.id, Track.VIDEO)
        assert ledger.finish_reconciliation(scene.id, Track.VIDEO, MediaStatus.COMPLETED)
        assert ledger.read(principal, scene.id).video.status == MediaStatus.COMPLETED

    def test_finish_reconciliation_outside_processing(self, ledger, principal, scene):
        assert ledger.finish_reconciliation(scene.id, Track.VIDEO, MediaStatus.FAILED, "late") is False
        assert ledger.read(principal, scene.id).video.status == MediaStatus.PENDING
