"""
Execution context store tests.

Covers binding lifetime, immutability, the escape hatch and propagation to
child tasks and threads. The interleaving tests use Hypothesis to fuzz how
many concurrently bound units run and how often each yields to the loop.

Run with: pytest tests/test_context.py -v
"""

import asyncio
import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from serviceos.tenancy.context import (
    ContextSource,
    ExecutionContext,
    arun,
    bind,
    current,
    current_actor_id,
    current_tenant_id,
    propagate,
    require_current,
    run,
    run_as_system,
    with_context,
    with_system_context,
)
from serviceos.tenancy.errors import ContextAlreadyBound, MissingTenantContext

from conftest import TENANT_A, TENANT_B, USER_A, USER_B, ctx_a, ctx_b


# ────────────────────────────────────────────────────────────────
# ExecutionContext value
# ────────────────────────────────────────────────────────────────

class TestExecutionContext:
    def test_rejects_empty_identifiers(self):
        with pytest.raises(ValueError, match="tenant_id must not be empty"):
            ExecutionContext(tenant_id="")
        with pytest.raises(ValueError, match="actor_id must not be empty"):
            ExecutionContext(actor_id="  ", tenant_id=TENANT_A)

    def test_system_context_cannot_carry_tenant(self):
        with pytest.raises(ValueError):
            ExecutionContext(tenant_id=TENANT_A, system_override=True)

    def test_is_immutable(self):
        ctx = ctx_a()
        with pytest.raises(dataclasses.FrozenInstanceError):
            ctx.tenant_id = TENANT_B

    def test_defaults(self):
        ctx = ExecutionContext()
        assert ctx.actor_id is None
        assert ctx.tenant_id is None
        assert ctx.system_override is False
        assert ctx.source == ContextSource.INTERNAL


# ────────────────────────────────────────────────────────────────
# Synchronous binding
# ────────────────────────────────────────────────────────────────

class TestSyncBinding:
    def test_nothing_bound_by_default(self):
        assert current() is None
        assert current_tenant_id() is None
        assert current_actor_id() is None

    def test_require_current_fails_when_unbound(self):
        with pytest.raises(MissingTenantContext):
            require_current()

    def test_run_binds_for_duration_only(self):
        seen = run(ctx_a(), lambda: (current_tenant_id(), current_actor_id()))
        assert seen == (TENANT_A, USER_A)
        assert current() is None

    def test_binding_ends_when_fn_raises(self):
        def boom():
            assert current_tenant_id() == TENANT_A
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            run(ctx_a(), boom)
        assert current() is None

    def test_run_refuses_coroutine_functions(self):
        async def body():
            return 1

        with pytest.raises(TypeError, match="arun"):
            run(ctx_a(), body)

    def test_rebinding_different_tenant_is_rejected(self):
        def nested():
            with bind(ctx_b()):
                pass

        with pytest.raises(ContextAlreadyBound):
            run(ctx_a(), nested)
        assert current() is None

    def test_rebinding_equal_context_is_allowed(self):
        def nested():
            with bind(ctx_a()):
                return current_tenant_id()

        assert run(ctx_a(), nested) == TENANT_A

    def test_rebinding_same_tenant_other_actor_is_rejected(self):
        def nested():
            with bind(ctx_a(actor_id=USER_B)):
                pass

        with pytest.raises(ContextAlreadyBound):
            run(ctx_a(), nested)


# ────────────────────────────────────────────────────────────────
# Escape hatch
# ────────────────────────────────────────────────────────────────

class TestRunAsSystem:
    def test_requires_reason(self):
        with pytest.raises(ValueError, match="reason"):
            run_as_system(lambda: None, reason="")
        with pytest.raises(TypeError):
            run_as_system(lambda: None)  # reason is keyword-only and mandatory

    def test_keeps_actor_and_drops_tenant(self):
        def inner():
            return run_as_system(current, reason="test")

        ctx = run(ctx_a(), inner)
        assert ctx.system_override is True
        assert ctx.tenant_id is None
        assert ctx.actor_id == USER_A
        assert ctx.role == "ADMIN"
        assert ctx.source == ContextSource.SYSTEM

    def test_outside_any_binding_actor_is_none(self):
        ctx = run_as_system(current, reason="startup maintenance")
        assert ctx.actor_id is None
        assert ctx.system_override is True

    def test_override_ends_with_fn(self):
        def inner():
            run_as_system(lambda: None, reason="test")
            return current()

        ctx = run(ctx_a(), inner)
        assert ctx.system_override is False
        assert ctx.tenant_id == TENANT_A

    def test_tenant_context_may_be_bound_inside_system(self):
        def inner():
            with bind(ctx_b()):
                return current_tenant_id()

        assert run_as_system(inner, reason="job fan-out") == TENANT_B

    def test_entry_is_logged_with_reason(self, caplog):
        caplog.set_level(logging.INFO, logger="serviceos.tenancy.context")
        run(ctx_a(), lambda: run_as_system(lambda: None, reason="notification fan-out"))
        assert "notification fan-out" in caplog.text
        assert any(r.levelno == logging.INFO for r in caplog.records)


# ────────────────────────────────────────────────────────────────
# Async propagation
# ────────────────────────────────────────────────────────────────

class TestAsyncPropagation:
    @pytest.mark.asyncio
    async def test_arun_binds_across_awaits(self):
        async def body():
            await asyncio.sleep(0)
            return current_tenant_id()

        assert await arun(ctx_a(), body) == TENANT_A
        assert current() is None

    @pytest.mark.asyncio
    async def test_child_tasks_inherit_binding(self):
        async def child():
            await asyncio.sleep(0)
            return current_tenant_id()

        async def body():
            task = asyncio.create_task(child())
            gathered = await asyncio.gather(child(), child())
            return [await task, *gathered]

        assert await with_context(USER_A, TENANT_A, "ADMIN", body) == [TENANT_A] * 3

    @pytest.mark.asyncio
    async def test_to_thread_inherits_binding(self):
        async def body():
            return await asyncio.to_thread(current_tenant_id)

        assert await arun(ctx_b(), body) == TENANT_B

    @pytest.mark.asyncio
    async def test_propagate_for_plain_executor(self):
        async def body():
            with ThreadPoolExecutor(max_workers=1) as pool:
                plain = pool.submit(current_tenant_id).result()
                wrapped = pool.submit(propagate(current_tenant_id)).result()
            return plain, wrapped

        plain, wrapped = await arun(ctx_a(), body)
        assert plain is None
        assert wrapped == TENANT_A

    @pytest.mark.asyncio
    async def test_siblings_never_see_each_other(self):
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(0.01)
            return current_tenant_id()

        async def fast():
            await started.wait()
            return current_tenant_id()

        a, b = await asyncio.gather(
            with_context(USER_A, TENANT_A, None, slow),
            with_context(USER_B, TENANT_B, None, fast),
        )
        assert (a, b) == (TENANT_A, TENANT_B)

    @pytest.mark.asyncio
    async def test_binding_released_on_cancellation(self):
        entered = asyncio.Event()

        async def body():
            entered.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(with_context(USER_A, TENANT_A, None, body))
        await entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert current() is None

    @pytest.mark.asyncio
    async def test_with_system_context_is_scoped(self):
        async def probe():
            return current()

        async def body():
            elevated = await with_system_context(probe, reason="cross-tenant lookup")
            return elevated, current()

        elevated, after = await with_context(USER_A, TENANT_A, None, body)
        assert elevated.system_override is True
        assert elevated.actor_id == USER_A
        assert after.tenant_id == TENANT_A
        assert after.system_override is False


# ────────────────────────────────────────────────────────────────
# Fuzzed interleavings
# ────────────────────────────────────────────────────────────────

TENANT_IDS = [f"{i:08d}-0000-4000-8000-000000000000" for i in range(1, 6)]


@settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(
    plan=st.lists(
        st.tuples(st.sampled_from(TENANT_IDS), st.integers(min_value=0, max_value=6)),
        min_size=1,
        max_size=16,
    )
)
def test_interleaved_units_observe_only_their_own_tenant(plan):
    async def child():
        await asyncio.sleep(0)
        return current_tenant_id()

    async def unit(tenant_id, yields):
        async def body():
            observed = [current_tenant_id()]
            for _ in range(yields):
                await asyncio.sleep(0)
                observed.append(current_tenant_id())
            observed.append(await asyncio.create_task(child()))
            return observed

        return await with_context(None, tenant_id, None, body)

    async def main():
        return await asyncio.gather(*(unit(t, n) for t, n in plan))

    results = asyncio.run(main())
    for (tenant_id, _), observed in zip(plan, results):
        assert set(observed) == {tenant_id}
    assert current() is None


@settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(elevated=st.lists(st.booleans(), min_size=1, max_size=10))
def test_escape_hatch_never_leaks_to_siblings(elevated):
    async def unit(index, use_system):
        async def inner():
            await asyncio.sleep(0)
            return current().system_override

        async def body():
            if use_system:
                inside = await with_system_context(inner, reason="fuzz")
            else:
                inside = await inner()
            await asyncio.sleep(0)
            return inside, current().system_override, current_tenant_id()

        tenant_id = TENANT_IDS[index % len(TENANT_IDS)]
        return tenant_id, await with_context(None, tenant_id, None, body)

    async def main():
        return await asyncio.gather(*(unit(i, flag) for i, flag in enumerate(elevated)))

    for (tenant_id, (inside, after, tenant_after)), flag in zip(asyncio.run(main()), elevated):
        assert inside is flag
        assert after is False
        assert tenant_after == tenant_id
