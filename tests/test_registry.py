import random
import threading

import pytest

from sqlsprinkler.registry import ZoneBusy
from sqlsprinkler.store import NotFound


def active_ids(ctx):
    return [z.id for z in ctx.registry.active_zones()]


def test_zones_follow_system_order(ctx, add_zone):
    a = add_zone("A", 5, system_order=2)
    b = add_zone("B", 6, system_order=1)
    c = add_zone("C", 13, system_order=1)

    assert [z.id for z in ctx.registry.zones()] == [b, c, a]
    assert ctx.registry.by_order(0).id == b
    assert ctx.registry.by_order(2).id == a


def test_unknown_zone_raises_not_found(ctx, three_zones):
    with pytest.raises(NotFound):
        ctx.registry.get(999)
    with pytest.raises(NotFound):
        ctx.registry.by_order(3)
    with pytest.raises(NotFound):
        ctx.registry.activate(999)


def test_activating_a_zone_switches_the_others_off(ctx, three_zones):
    first, second, _ = three_zones

    ctx.registry.activate(first)
    ctx.registry.activate(second)

    assert active_ids(ctx) == [second]


def test_sweep_happens_before_activation(ctx, three_zones, pin_log):
    ctx.registry.activate(three_zones[1])

    # Every zone, the target included, is driven off before the target goes on
    assert pin_log[-1] == (6, True)
    assert sorted(pin_log[:-1]) == [(5, False), (6, False), (13, False)]


def test_activation_cancels_other_zones_timers(ctx, three_zones, timers_made):
    first, second, _ = three_zones
    ctx.registry.activate(first)
    ctx.registry.activate(second)

    assert not ctx.timers.is_pending(first)
    assert ctx.timers.is_pending(second)
    assert timers_made[0].cancelled


def test_stale_timer_does_not_switch_off_reactivated_zone(ctx, three_zones, timers_made):
    zone_id = three_zones[0]
    ctx.registry.activate(zone_id)
    ctx.registry.activate(zone_id)

    # The first timer's callback was already running when it was replaced
    timers_made[0].fire(force=True)
    assert active_ids(ctx) == [zone_id]

    timers_made[1].fire()
    assert active_ids(ctx) == []


def test_auto_off_after_zone_was_switched_off_manually(ctx, three_zones, timers_made):
    zone_id = three_zones[0]
    ctx.registry.activate(zone_id)
    ctx.registry.deactivate(zone_id)
    ctx.registry.activate(three_zones[1])

    timers_made[0].fire(force=True)
    assert active_ids(ctx) == [three_zones[1]]


def test_run_for_is_blocking_and_exclusive(ctx, three_zones, pin_log):
    first, second, _ = three_zones
    ctx.registry.activate(first)

    waits = []
    ctx.registry.run_for(second, 30, sleep=waits.append)

    assert waits == [30]
    assert active_ids(ctx) == []
    assert pin_log[-2:] == [(6, True), (6, False)]


def test_run_for_uses_zone_duration_by_default(ctx, three_zones, sleeps):
    ctx.registry.run_for(three_zones[2])
    assert sleeps == [120]


def test_concurrent_activations_never_overlap(ctx, three_zones, board):
    def worker(seed):
        rng = random.Random(seed)
        for _ in range(50):
            ctx.registry.activate(rng.choice(three_zones))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert board["violations"] == []
    assert len(active_ids(ctx)) == 1


def test_all_off_includes_orphaned_pins(ctx, three_zones):
    ctx.registry.activate(three_zones[0])
    stray = ctx.pins.get(21)
    stray.set_active(True)

    ctx.registry.all_off()

    assert active_ids(ctx) == []
    assert not stray.is_active()


def test_statuses(ctx, three_zones):
    ctx.registry.activate(three_zones[0])
    statuses = ctx.registry.statuses()

    assert [s["id"] for s in statuses] == three_zones
    assert [s["active"] for s in statuses] == [True, False, False]
    assert statuses[0]["pending_auto_off"] is True
    assert ctx.registry.status(three_zones[1])["active"] is False


def test_pin_change_rejected_while_active(ctx, three_zones):
    zone_id = three_zones[0]
    ctx.registry.activate(zone_id)

    with pytest.raises(ZoneBusy):
        ctx.registry.update_zone(zone_id, {"pin": 26})
    assert ctx.store.get_zone(zone_id).pin == 5

    # Other fields may change while it runs
    ctx.registry.update_zone(zone_id, {"name": "Front"})
    assert ctx.store.get_zone(zone_id).name == "Front"


def test_pin_change_allowed_while_inactive(ctx, three_zones):
    zone_id = three_zones[0]
    ctx.registry.update_zone(zone_id, {"pin": 26})
    assert ctx.registry.get(zone_id).pin == 26


def test_deleting_active_zone_switches_it_off(ctx, three_zones):
    zone_id = three_zones[0]
    ctx.registry.activate(zone_id)

    ctx.registry.delete_zone(zone_id)

    assert not ctx.pins.get(5).is_active()
    assert not ctx.timers.is_pending(zone_id)
    with pytest.raises(NotFound):
        ctx.registry.get(zone_id)


def test_reorder_changes_iteration(ctx, three_zones):
    ctx.registry.reorder([2, 0, 1])
    a, b, c = three_zones
    assert [z.id for z in ctx.registry.zones()] == [b, c, a]
