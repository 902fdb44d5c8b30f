from datetime import date

import pytest

from conftest import day, register, submit
from custody.core.errors import AuthorizationError, ConflictError, NotFoundError, StateError, ValidationError
from custody.models.enum import AssetStatus, CustodyEvent, ItemCondition, ReservationStatus
from custody.models.asset import Asset
from custody.models.reservation import Reservation


@pytest.mark.asyncio
async def test_create_reservation_is_pending(coordinator, approver, requester, hook):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(1), day(3))

    assert reservation.status == ReservationStatus.PENDING
    assert reservation.requester_id == "user-1"
    assert reservation.return_date == day(3)
    await coordinator.notifier.drain()
    assert ("reservation.created", reservation.id) in hook.events


@pytest.mark.asyncio
async def test_create_rejects_inverted_window(coordinator, approver, requester):
    asset = await register(coordinator, approver)
    with pytest.raises(ValidationError):
        await submit(coordinator, requester, asset.id, day(3), day(1))
    assert await coordinator.store.find_reservations(item_id=asset.id) == []


@pytest.mark.asyncio
async def test_create_rejects_return_before_start(coordinator, approver, requester):
    asset = await register(coordinator, approver)
    with pytest.raises(ValidationError):
        await submit(coordinator, requester, asset.id, day(3), day(5), return_date=day(2))


@pytest.mark.asyncio
async def test_create_for_unknown_asset(coordinator, requester):
    with pytest.raises(NotFoundError):
        await submit(coordinator, requester, "0" * 24, day(1), day(2))


@pytest.mark.asyncio
async def test_pending_requests_may_overlap(coordinator, approver, requester, other_requester):
    asset = await register(coordinator, approver)
    first = await submit(coordinator, requester, asset.id, day(1), day(5))
    second = await submit(coordinator, other_requester, asset.id, day(2), day(4))

    pending = await coordinator.list_reservations(approver, item_id=asset.id, statuses=[ReservationStatus.PENDING])
    assert {r.id for r in pending} == {first.id, second.id}


@pytest.mark.asyncio
async def test_approve_sets_reserved_and_notifies(coordinator, approver, requester, hook):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(1), day(3))

    approved = await coordinator.approve(approver, reservation.id)

    assert approved.status == ReservationStatus.APPROVED
    assert approved.decided_by == "approver-1"
    assert (await coordinator.get_asset(asset.id)).status == AssetStatus.RESERVED
    await coordinator.notifier.drain()
    assert ("reservation.approved", reservation.id) in hook.events


@pytest.mark.asyncio
async def test_requester_cannot_approve(coordinator, approver, requester):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(1), day(3))
    with pytest.raises(AuthorizationError):
        await coordinator.approve(requester, reservation.id)
    assert (await coordinator.store.get_reservation(reservation.id)).status == ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_scenario_overlapping_approval_conflicts(coordinator, approver, requester, other_requester):
    asset = await register(coordinator, approver)
    r1 = await submit(coordinator, requester, asset.id, date(2024, 6, 1), date(2024, 6, 5))
    r2 = await submit(coordinator, other_requester, asset.id, date(2024, 6, 3), date(2024, 6, 4))
    await coordinator.approve(approver, r1.id)
    before_r1 = await coordinator.store.get_reservation(r1.id)
    before_asset = await coordinator.get_asset(asset.id)

    with pytest.raises(ConflictError) as excinfo:
        await coordinator.approve(approver, r2.id)

    assert excinfo.value.conflicting_ids == [r1.id]
    assert await coordinator.store.get_reservation(r1.id) == before_r1
    assert (await coordinator.store.get_reservation(r2.id)).status == ReservationStatus.PENDING
    assert await coordinator.get_asset(asset.id) == before_asset


@pytest.mark.asyncio
async def test_adjacent_windows_share_a_boundary_day(coordinator, approver, requester, other_requester):
    asset = await register(coordinator, approver)
    r1 = await submit(coordinator, requester, asset.id, day(1), day(3))
    r2 = await submit(coordinator, other_requester, asset.id, day(3), day(5))
    r3 = await submit(coordinator, other_requester, asset.id, day(4), day(6))
    await coordinator.approve(approver, r1.id)

    with pytest.raises(ConflictError):
        await coordinator.approve(approver, r2.id)
    assert (await coordinator.approve(approver, r3.id)).status == ReservationStatus.APPROVED


@pytest.mark.asyncio
async def test_conflicts_are_per_asset(coordinator, approver, requester):
    projector = await register(coordinator, approver, name="Projector")
    camera = await register(coordinator, approver, name="Camera")
    r1 = await submit(coordinator, requester, projector.id, day(1), day(3))
    r2 = await submit(coordinator, requester, camera.id, day(1), day(3))

    await coordinator.approve(approver, r1.id)
    assert (await coordinator.approve(approver, r2.id)).status == ReservationStatus.APPROVED


@pytest.mark.asyncio
async def test_reject_and_cancel(coordinator, approver, requester, hook):
    asset = await register(coordinator, approver)
    r1 = await submit(coordinator, requester, asset.id, day(1), day(3))
    r2 = await submit(coordinator, requester, asset.id, day(1), day(3))

    assert (await coordinator.reject(approver, r1.id)).status == ReservationStatus.REJECTED
    assert (await coordinator.cancel(requester, r2.id)).status == ReservationStatus.CANCELLED
    assert (await coordinator.get_asset(asset.id)).status == AssetStatus.AVAILABLE
    await coordinator.notifier.drain()
    assert ("reservation.rejected", r1.id) in hook.events


@pytest.mark.asyncio
async def test_only_requester_may_cancel(coordinator, approver, requester, other_requester):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(1), day(3))

    with pytest.raises(AuthorizationError):
        await coordinator.cancel(other_requester, reservation.id)
    with pytest.raises(AuthorizationError):
        await coordinator.cancel(approver, reservation.id)
    assert (await coordinator.store.get_reservation(reservation.id)).status == ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_cannot_cancel_after_approval(coordinator, approver, requester):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(1), day(3))
    await coordinator.approve(approver, reservation.id)
    with pytest.raises(StateError):
        await coordinator.cancel(requester, reservation.id)


@pytest.mark.asyncio
@pytest.mark.parametrize("terminal", ["rejected", "cancelled", "completed"])
async def test_terminal_states_refuse_transitions(coordinator, approver, requester, terminal):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(0), day(2))
    if terminal == "rejected":
        await coordinator.reject(approver, reservation.id)
    elif terminal == "cancelled":
        await coordinator.cancel(requester, reservation.id)
    else:
        await coordinator.approve(approver, reservation.id)
        await coordinator.confirm_receipt(approver, reservation.id, ItemCondition.GOOD)
        await coordinator.confirm_return(approver, reservation.id, ItemCondition.GOOD)

    for attempt in (
        coordinator.approve(approver, reservation.id),
        coordinator.reject(approver, reservation.id),
        coordinator.cancel(requester, reservation.id),
        coordinator.confirm_receipt(approver, reservation.id, ItemCondition.GOOD),
        coordinator.confirm_return(approver, reservation.id, ItemCondition.GOOD),
    ):
        with pytest.raises(StateError):
            await attempt


@pytest.mark.asyncio
async def test_receipt_requires_approval(coordinator, approver, requester):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(0), day(2))
    with pytest.raises(StateError):
        await coordinator.confirm_receipt(approver, reservation.id, ItemCondition.GOOD)


@pytest.mark.asyncio
async def test_scenario_pickup_due_then_receipt(coordinator, approver, requester, clock):
    clock.set_day(date(2024, 6, 1))
    asset = await register(coordinator, approver)
    r1 = await submit(coordinator, requester, asset.id, date(2024, 6, 1), date(2024, 6, 5))
    await coordinator.approve(approver, r1.id)

    assert [r.id for r in await coordinator.list_pickup_due(approver)] == [r1.id]

    reservation, asset_after = await coordinator.confirm_receipt(approver, r1.id, ItemCondition.GOOD)

    assert reservation.status == ReservationStatus.APPROVED
    assert reservation.checkout_date == clock.now
    assert reservation.item_condition_on_receive == ItemCondition.GOOD
    assert asset_after.status == AssetStatus.IN_USE
    assert await coordinator.list_pickup_due(approver) == []


@pytest.mark.asyncio
async def test_pickup_due_only_on_start_day(coordinator, approver, requester, clock):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(1), day(3))
    await coordinator.approve(approver, reservation.id)

    assert await coordinator.list_pickup_due(approver) == []
    clock.set_day(day(1))
    assert [r.id for r in await coordinator.list_pickup_due(approver)] == [reservation.id]
    clock.set_day(day(2))
    assert await coordinator.list_pickup_due(approver) == []


@pytest.mark.asyncio
async def test_scenario_return_due_then_damaged_return(coordinator, approver, requester, clock):
    clock.set_day(date(2024, 6, 1))
    asset = await register(coordinator, approver)
    r1 = await submit(coordinator, requester, asset.id, date(2024, 6, 1), date(2024, 6, 5), return_date=date(2024, 6, 5))
    await coordinator.approve(approver, r1.id)
    await coordinator.confirm_receipt(approver, r1.id, ItemCondition.GOOD)

    clock.set_day(date(2024, 6, 6))
    assert [r.id for r in await coordinator.list_return_due(approver)] == [r1.id]

    reservation, asset_after = await coordinator.confirm_return(approver, r1.id, ItemCondition.DAMAGE, "cracked lens")

    assert reservation.status == ReservationStatus.COMPLETED
    assert reservation.return_notes == "cracked lens"
    assert asset_after.status == AssetStatus.MAINTENANCE
    assert asset_after.under_maintenance is True
    assert await coordinator.list_return_due(approver) == []


@pytest.mark.asyncio
async def test_good_return_makes_asset_available(coordinator, approver, requester):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(0), day(1))
    await coordinator.approve(approver, reservation.id)
    await coordinator.confirm_receipt(approver, reservation.id, ItemCondition.GOOD)

    completed, asset_after = await coordinator.confirm_return(approver, reservation.id, ItemCondition.GOOD)

    assert completed.status == ReservationStatus.COMPLETED
    assert asset_after.status == AssetStatus.AVAILABLE


@pytest.mark.asyncio
async def test_good_return_keeps_asset_reserved_for_next_booking(coordinator, approver, requester, other_requester):
    asset = await register(coordinator, approver)
    first = await submit(coordinator, requester, asset.id, day(0), day(1))
    second = await submit(coordinator, other_requester, asset.id, day(4), day(5))
    await coordinator.approve(approver, first.id)
    await coordinator.approve(approver, second.id)
    await coordinator.confirm_receipt(approver, first.id, ItemCondition.GOOD)

    _, asset_after = await coordinator.confirm_return(approver, first.id, ItemCondition.GOOD)

    assert asset_after.status == AssetStatus.RESERVED


@pytest.mark.asyncio
@pytest.mark.parametrize("notes", [None, "", "   "])
async def test_damage_receipt_without_notes_changes_nothing(coordinator, approver, requester, notes):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(0), day(2))
    await coordinator.approve(approver, reservation.id)
    before = await coordinator.store.get_reservation(reservation.id)

    with pytest.raises(ValidationError):
        await coordinator.confirm_receipt(approver, reservation.id, ItemCondition.DAMAGE, notes)

    assert await coordinator.store.get_reservation(reservation.id) == before
    assert (await coordinator.get_asset(asset.id)).status == AssetStatus.RESERVED
    assert await coordinator.store.list_condition_records(reservation.id) == []


@pytest.mark.asyncio
async def test_damage_return_without_notes_changes_nothing(coordinator, approver, requester):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(0), day(2))
    await coordinator.approve(approver, reservation.id)
    await coordinator.confirm_receipt(approver, reservation.id, ItemCondition.GOOD)

    with pytest.raises(ValidationError):
        await coordinator.confirm_return(approver, reservation.id, ItemCondition.DAMAGE, " ")

    stored = await coordinator.store.get_reservation(reservation.id)
    assert stored.status == ReservationStatus.APPROVED
    assert stored.item_condition_on_return is None
    assert (await coordinator.get_asset(asset.id)).status == AssetStatus.IN_USE
    assert len(await coordinator.store.list_condition_records(reservation.id)) == 1


@pytest.mark.asyncio
async def test_receipt_is_write_once(coordinator, approver, requester):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(0), day(2))
    await coordinator.approve(approver, reservation.id)
    await coordinator.confirm_receipt(approver, reservation.id, ItemCondition.DAMAGE, "scratched case")

    with pytest.raises(StateError):
        await coordinator.confirm_receipt(approver, reservation.id, ItemCondition.GOOD)

    stored = await coordinator.store.get_reservation(reservation.id)
    assert stored.item_condition_on_receive == ItemCondition.DAMAGE
    assert stored.damage_notes == "scratched case"


@pytest.mark.asyncio
async def test_condition_history_is_append_only(coordinator, approver, requester):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(0), day(2))
    await coordinator.approve(approver, reservation.id)
    await coordinator.confirm_receipt(approver, reservation.id, ItemCondition.GOOD, "  all parts present ")
    await coordinator.confirm_return(approver, reservation.id, ItemCondition.DAMAGE, "missing cable")

    history = await coordinator.condition_history(requester, reservation.id)

    assert [r.event_type for r in history] == [CustodyEvent.RECEIPT, CustodyEvent.RETURN]
    assert [r.notes for r in history] == ["all parts present", "missing cable"]
    assert all(r.recorded_by == "approver-1" for r in history)


@pytest.mark.asyncio
async def test_return_without_receipt_completes(coordinator, approver, requester):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(0), day(2))
    await coordinator.approve(approver, reservation.id)

    completed, asset_after = await coordinator.confirm_return(approver, reservation.id, ItemCondition.GOOD)

    assert completed.status == ReservationStatus.COMPLETED
    assert completed.checkout_date is None
    assert asset_after.status == AssetStatus.AVAILABLE


@pytest.mark.asyncio
async def test_completed_reservation_frees_window(coordinator, approver, requester, other_requester):
    asset = await register(coordinator, approver)
    first = await submit(coordinator, requester, asset.id, day(0), day(3))
    second = await submit(coordinator, other_requester, asset.id, day(2), day(4))
    await coordinator.approve(approver, first.id)
    await coordinator.confirm_receipt(approver, first.id, ItemCondition.GOOD)
    await coordinator.confirm_return(approver, first.id, ItemCondition.GOOD)

    assert (await coordinator.approve(approver, second.id)).status == ReservationStatus.APPROVED


@pytest.mark.asyncio
async def test_maintenance_release_and_out_of_service(coordinator, approver, requester, other_requester):
    asset = await register(coordinator, approver)
    first = await submit(coordinator, requester, asset.id, day(0), day(1))
    await coordinator.approve(approver, first.id)
    await coordinator.confirm_receipt(approver, first.id, ItemCondition.GOOD)
    await coordinator.confirm_return(approver, first.id, ItemCondition.DAMAGE, "bent tripod leg")

    second = await submit(coordinator, other_requester, asset.id, day(0), day(1))
    await coordinator.approve(approver, second.id)
    with pytest.raises(StateError):
        await coordinator.confirm_receipt(approver, second.id, ItemCondition.GOOD)

    released = await coordinator.release_from_maintenance(approver, asset.id)
    assert released.status == AssetStatus.RESERVED
    assert released.under_maintenance is False

    third = await submit(coordinator, requester, asset.id, day(5), day(6))
    retired = await coordinator.mark_out_of_service(approver, asset.id)
    assert retired.status == AssetStatus.OUT_OF_SERVICE
    with pytest.raises(StateError):
        await coordinator.approve(approver, third.id)

    restored = await coordinator.return_to_service(approver, asset.id)
    assert restored.status == AssetStatus.RESERVED


@pytest.mark.asyncio
async def test_cannot_retire_asset_in_use(coordinator, approver, requester):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(0), day(1))
    await coordinator.approve(approver, reservation.id)
    await coordinator.confirm_receipt(approver, reservation.id, ItemCondition.GOOD)

    with pytest.raises(StateError):
        await coordinator.mark_out_of_service(approver, asset.id)
    with pytest.raises(StateError):
        await coordinator.release_from_maintenance(approver, asset.id)


@pytest.mark.asyncio
async def test_requesters_only_see_their_own(coordinator, approver, requester, other_requester):
    asset = await register(coordinator, approver)
    mine = await submit(coordinator, requester, asset.id, day(0), day(1))
    theirs = await submit(coordinator, other_requester, asset.id, day(0), day(1))

    assert [r.id for r in await coordinator.list_reservations(requester)] == [mine.id]
    assert {r.id for r in await coordinator.list_reservations(approver)} == {mine.id, theirs.id}
    with pytest.raises(AuthorizationError):
        await coordinator.get_reservation(requester, theirs.id)
    with pytest.raises(AuthorizationError):
        await coordinator.list_reservations(requester, requester_id="user-2")
    with pytest.raises(AuthorizationError):
        await coordinator.list_pickup_due(requester)


@pytest.mark.asyncio
async def test_failing_notification_hook_does_not_break_approval(store, clock, approver, requester):
    from custody.core.lifecycle import LifecycleCoordinator
    from custody.core.notifications import NotificationDispatcher

    async def broken_hook(event, reservation):
        raise RuntimeError("mail server down")

    coordinator = LifecycleCoordinator(store, NotificationDispatcher(broken_hook), clock=clock)
    asset = await register(coordinator, approver)
    reservation = await coordinator.create_reservation(
        requester, Reservation.Create(item_id=asset.id, start_date=day(0), end_date=day(1))
    )
    approved = await coordinator.approve(approver, reservation.id)
    await coordinator.notifier.drain()

    assert approved.status == ReservationStatus.APPROVED


# --- Administrative holds vs. custody events ---

async def damaged_return(coordinator, approver, requester, asset_id, notes="cracked housing"):
    reservation = await submit(coordinator, requester, asset_id, day(0), day(1))
    await coordinator.approve(approver, reservation.id)
    await coordinator.confirm_receipt(approver, reservation.id, ItemCondition.GOOD)
    await coordinator.confirm_return(approver, reservation.id, ItemCondition.DAMAGE, notes)
    return reservation


@pytest.mark.asyncio
async def test_out_of_service_round_trip_keeps_maintenance(coordinator, approver, requester, other_requester):
    asset = await register(coordinator, approver)
    await damaged_return(coordinator, approver, requester, asset.id)

    retired = await coordinator.mark_out_of_service(approver, asset.id)
    assert retired.status == AssetStatus.OUT_OF_SERVICE
    assert retired.under_maintenance is True

    restored = await coordinator.return_to_service(approver, asset.id)
    assert restored.status == AssetStatus.MAINTENANCE
    assert restored.out_of_service is False
    assert restored.under_maintenance is True

    # masih rusak: belum boleh diserahkan sampai di-release
    follow_up = await submit(coordinator, other_requester, asset.id, day(2), day(3))
    await coordinator.approve(approver, follow_up.id)
    with pytest.raises(StateError):
        await coordinator.confirm_receipt(approver, follow_up.id, ItemCondition.GOOD)

    released = await coordinator.release_from_maintenance(approver, asset.id)
    assert released.status == AssetStatus.RESERVED


@pytest.mark.asyncio
async def test_damaged_return_on_out_of_service_asset_adds_maintenance(coordinator, approver, requester):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(0), day(1))
    await coordinator.approve(approver, reservation.id)
    await coordinator.mark_out_of_service(approver, asset.id)

    completed, asset_after = await coordinator.confirm_return(approver, reservation.id, ItemCondition.DAMAGE, "dropped")

    assert completed.status == ReservationStatus.COMPLETED
    assert asset_after.status == AssetStatus.OUT_OF_SERVICE
    assert asset_after.out_of_service is True
    assert asset_after.under_maintenance is True
    assert (await coordinator.return_to_service(approver, asset.id)).status == AssetStatus.MAINTENANCE


@pytest.mark.asyncio
async def test_good_return_does_not_clear_earlier_maintenance(coordinator, approver, requester, other_requester):
    asset = await register(coordinator, approver)
    await damaged_return(coordinator, approver, requester, asset.id)
    second = await submit(coordinator, other_requester, asset.id, day(2), day(3))
    await coordinator.approve(approver, second.id)

    _, asset_after = await coordinator.confirm_return(approver, second.id, ItemCondition.GOOD)

    assert asset_after.status == AssetStatus.MAINTENANCE
    assert asset_after.under_maintenance is True


@pytest.mark.asyncio
async def test_unknown_asset_leaves_no_lock_behind(coordinator, approver):
    unknown = "0" * 24
    for operation in (coordinator.mark_out_of_service, coordinator.return_to_service, coordinator.release_from_maintenance):
        with pytest.raises(NotFoundError):
            await operation(approver, unknown)
    assert unknown not in coordinator._locks


# --- Asset edit / delete ---

@pytest.mark.asyncio
async def test_update_asset_descriptive_fields(coordinator, approver, requester):
    asset = await register(coordinator, approver, name="Projectr")

    updated = await coordinator.update_asset(approver, asset.id, Asset.Update(name="Projector", location="Room 4"))

    assert updated.name == "Projector"
    assert updated.location == "Room 4"
    assert updated.category == "AV"
    assert updated.status == AssetStatus.AVAILABLE
    assert (await coordinator.get_asset(asset.id)).name == "Projector"

    with pytest.raises(AuthorizationError):
        await coordinator.update_asset(requester, asset.id, Asset.Update(name="Mine now"))
    with pytest.raises(ValidationError):
        await coordinator.update_asset(approver, asset.id, Asset.Update())
    with pytest.raises(ValidationError):
        await coordinator.update_asset(approver, asset.id, Asset.Update(name=None))


@pytest.mark.asyncio
async def test_delete_asset_refused_while_approved(coordinator, approver, requester):
    asset = await register(coordinator, approver)
    reservation = await submit(coordinator, requester, asset.id, day(0), day(1))
    await coordinator.approve(approver, reservation.id)

    with pytest.raises(StateError):
        await coordinator.delete_asset(approver, asset.id)

    await coordinator.confirm_return(approver, reservation.id, ItemCondition.GOOD)
    await coordinator.delete_asset(approver, asset.id)
    await coordinator.delete_asset(approver, asset.id)

    with pytest.raises(NotFoundError):
        await coordinator.get_asset(asset.id)
    assert await coordinator.list_assets() == []
    with pytest.raises(NotFoundError):
        await submit(coordinator, requester, asset.id, day(4), day(5))
    # riwayat tetap ada
    history = await coordinator.list_reservations(approver, item_id=asset.id)
    assert [r.id for r in history] == [reservation.id]
