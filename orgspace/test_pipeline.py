"""
orgspace/test_pipeline.py

Tests for the request pipeline: stage order, disable rules, hook ordering
and failure, post-hook skipping, and single-send.

Run:
    pytest orgspace/test_pipeline.py -v
"""

import asyncio

import pytest

from orgspace.config import Settings
from orgspace.context import Identity, RequestContext
from orgspace.errors import PermissionDenied
from orgspace.hooks import EmptyHookRegistry, HookRegistry, Phase
from orgspace.logger import SecurityLog
from orgspace.pipeline import Endpoint, RequestPipeline, disable_user_api, disable_user_patch_password


class SpyTransport:
    def __init__(self):
        self.sent = []

    def send(self, response):
        self.sent.append(response)


def ok_operation(ctx):
    ctx.locals.message = {"ok": True}


def make_pipeline(tmp_path, hooks=None, settings=None, identity_resolver=None):
    return RequestPipeline(
        settings or Settings(),
        hooks or EmptyHookRegistry(),
        SecurityLog(tmp_path / "logs" / "security.log"),
        identity_resolver=identity_resolver,
    )


def run(pipeline, ctx, endpoint):
    transport = SpyTransport()
    response = asyncio.run(pipeline.handle(ctx, endpoint, transport))
    return response, transport


class TestHappyPath:
    def test_core_operation_result_is_sent_once(self, tmp_path):
        pipeline = make_pipeline(tmp_path)
        ctx = RequestContext(method="GET", path="/api/users/whoami")

        response, transport = run(pipeline, ctx, Endpoint("whoami", ok_operation))

        assert response.status_code == 200
        assert response.body == b'{"ok": true}'
        assert len(transport.sent) == 1

    def test_async_core_operation_is_awaited(self, tmp_path):
        async def operation(ctx):
            await asyncio.sleep(0)
            ctx.locals.message = "done"
            ctx.locals.content_type = "text/plain"

        response, _ = run(make_pipeline(tmp_path), RequestContext("GET", "/x"), Endpoint("x", operation))
        assert response.body == b"done"


class TestIdentity:
    def test_resolver_identity_is_used(self, tmp_path):
        seen = []

        def operation(ctx):
            seen.append(ctx.acting_identity)

        pipeline = make_pipeline(tmp_path, identity_resolver=lambda ctx: Identity(id="u1", username="alice"))
        run(pipeline, RequestContext("GET", "/x"), Endpoint("x", operation))
        assert seen == [Identity(id="u1", username="alice")]

    def test_failing_resolver_falls_back_to_anonymous(self, tmp_path):
        def broken_resolver(ctx):
            raise RuntimeError("identity backend down")

        seen = []
        pipeline = make_pipeline(tmp_path, identity_resolver=broken_resolver)
        response, _ = run(
            pipeline, RequestContext("GET", "/x"), Endpoint("x", lambda ctx: seen.append(ctx.acting_identity.display))
        )

        assert response.status_code == 200
        assert seen == ["anonymous"]


class TestDisableRules:
    def test_disabled_method_returns_403_and_runs_no_hooks(self, tmp_path):
        counter = {"hooks": 0, "core": 0}

        def count_hook(ctx):
            counter["hooks"] += 1

        def operation(ctx):
            counter["core"] += 1

        registry = HookRegistry()
        registry.register("patchUser", Phase.pre, count_hook)
        registry.register("patchUser", Phase.post, count_hook)
        registry.freeze()
        settings = Settings.model_validate({"server": {"api": {"userAPI": {"patch": False}}}})
        pipeline = make_pipeline(tmp_path, hooks=registry, settings=settings)
        ctx = RequestContext(method="PATCH", path="/api/users/alice")

        response, transport = run(pipeline, ctx, Endpoint("patchUser", operation, disable_checks=(disable_user_api,)))

        assert response.status_code == 403
        assert response.body == b"PATCH /api/users/alice is disabled."
        assert counter == {"hooks": 0, "core": 0}
        assert len(transport.sent) == 1

    def test_other_methods_stay_enabled(self, tmp_path):
        settings = Settings.model_validate({"server": {"api": {"userAPI": {"patch": False}}}})
        pipeline = make_pipeline(tmp_path, settings=settings)

        response, _ = run(
            pipeline,
            RequestContext("GET", "/api/users/alice"),
            Endpoint("getUser", ok_operation, disable_checks=(disable_user_api,)),
        )
        assert response.status_code == 200

    def test_patch_password_switch(self, tmp_path):
        settings = Settings.model_validate({"server": {"api": {"userAPI": {"patchPassword": False}}}})
        pipeline = make_pipeline(tmp_path, settings=settings)
        endpoint = Endpoint(
            "patchPassword", ok_operation, disable_checks=(disable_user_api, disable_user_patch_password)
        )

        response, _ = run(pipeline, RequestContext("PATCH", "/api/users/alice/password"), endpoint)

        assert response.status_code == 403
        assert response.body == b"PATCH /api/users/alice/password is disabled."


class TestHooks:
    def test_pre_hooks_run_in_registration_order(self, tmp_path):
        markers = []

        async def first(ctx):
            await asyncio.sleep(0.01)
            markers.append("first")

        def second(ctx):
            markers.append("second")

        registry = HookRegistry()
        registry.register("createProject", Phase.pre, first)
        registry.register("createProject", Phase.pre, second)
        registry.freeze()

        run(
            make_pipeline(tmp_path, hooks=registry),
            RequestContext("POST", "/api/orgs/o/projects/p"),
            Endpoint("createProject", lambda ctx: markers.append("core")),
        )

        assert markers == ["first", "second", "core"]

    def test_post_hooks_run_after_core(self, tmp_path):
        markers = []
        registry = HookRegistry()
        registry.register("getProject", Phase.post, lambda ctx: markers.append("post"))
        registry.freeze()

        response, transport = run(
            make_pipeline(tmp_path, hooks=registry),
            RequestContext("GET", "/x"),
            Endpoint("getProject", lambda ctx: markers.append("core")),
        )

        assert markers == ["core", "post"]
        assert len(transport.sent) == 1

    def test_failing_pre_hook_aborts_remaining_hooks_and_core(self, tmp_path):
        markers = []

        def failing(ctx):
            raise RuntimeError("quota service unavailable")

        registry = HookRegistry()
        registry.register("createProject", Phase.pre, failing)
        registry.register("createProject", Phase.pre, lambda ctx: markers.append("second"))
        registry.register("createProject", Phase.post, lambda ctx: markers.append("post"))
        registry.freeze()

        response, transport = run(
            make_pipeline(tmp_path, hooks=registry),
            RequestContext("POST", "/x"),
            Endpoint("createProject", lambda ctx: markers.append("core")),
        )

        assert markers == []
        assert response.status_code == 500
        assert response.body == b"Internal Server Error"
        assert len(transport.sent) == 1

    def test_hook_operation_error_keeps_its_status(self, tmp_path):
        def deny(ctx):
            raise PermissionDenied("Plugin says no.")

        registry = HookRegistry()
        registry.register("createProject", Phase.pre, deny)
        registry.freeze()

        response, _ = run(make_pipeline(tmp_path, hooks=registry), RequestContext("POST", "/x"),
                          Endpoint("createProject", ok_operation))

        assert response.status_code == 403
        assert response.body == b"Plugin says no."

    def test_failing_post_hook_replaces_success(self, tmp_path):
        def failing(ctx):
            raise ValueError("boom")

        registry = HookRegistry()
        registry.register("getProject", Phase.post, failing)
        registry.freeze()

        response, transport = run(make_pipeline(tmp_path, hooks=registry), RequestContext("GET", "/x"),
                                  Endpoint("getProject", ok_operation))

        assert response.status_code == 500
        assert response.content_type == "text/plain"
        assert len(transport.sent) == 1

    def test_post_hooks_skipped_when_status_already_set(self, tmp_path):
        counter = {"post": 0}

        def count_post(ctx):
            counter["post"] += 1

        def operation(ctx):
            ctx.response.status(500)
            ctx.locals.message = "failed upstream"
            ctx.locals.status_code = 500

        registry = HookRegistry()
        registry.register("getProject", Phase.post, count_post)
        registry.freeze()

        response, transport = run(make_pipeline(tmp_path, hooks=registry), RequestContext("GET", "/x"),
                                  Endpoint("getProject", operation))

        assert counter["post"] == 0
        assert response.status_code == 500
        assert len(transport.sent) == 1


class TestHooksOwningTheResponse:
    def test_pre_hook_response_is_transmitted_once_with_its_status(self, tmp_path):
        def deny(ctx):
            ctx.response.status(401).set_header("Content-Type", "text/plain").send(b"denied by plugin")

        registry = HookRegistry()
        registry.register("whoami", Phase.pre, deny)
        registry.freeze()

        response, transport = run(make_pipeline(tmp_path, hooks=registry), RequestContext("GET", "/x"),
                                  Endpoint("whoami", ok_operation))

        assert len(transport.sent) == 1
        assert transport.sent[0].status_code == 401
        assert transport.sent[0].body == b"denied by plugin"
        assert response.content_type == "text/plain"
        assert response.transmitted is True

    def test_pre_hook_response_stops_later_hooks_and_core(self, tmp_path):
        markers = []

        def deny(ctx):
            ctx.response.status(401).send(b"denied")

        registry = HookRegistry()
        registry.register("createProject", Phase.pre, deny)
        registry.register("createProject", Phase.pre, lambda ctx: markers.append("second"))
        registry.register("createProject", Phase.post, lambda ctx: markers.append("post"))
        registry.freeze()

        response, _ = run(make_pipeline(tmp_path, hooks=registry), RequestContext("POST", "/x"),
                          Endpoint("createProject", lambda ctx: markers.append("core")))

        assert markers == []
        assert response.status_code == 401

    def test_hook_response_without_status_defaults_to_200(self, tmp_path):
        registry = HookRegistry()
        registry.register("x", Phase.pre, lambda ctx: ctx.response.send(b"cached"))
        registry.freeze()

        response, transport = run(make_pipeline(tmp_path, hooks=registry), RequestContext("GET", "/x"),
                                  Endpoint("x", ok_operation))

        assert response.status_code == 200
        assert response.body == b"cached"
        assert len(transport.sent) == 1

    def test_error_after_hook_response_keeps_that_response(self, tmp_path):
        def send_then_fail(ctx):
            ctx.response.status(202).send(b"accepted")
            raise RuntimeError("late failure")

        registry = HookRegistry()
        registry.register("x", Phase.pre, send_then_fail)
        registry.freeze()

        response, transport = run(make_pipeline(tmp_path, hooks=registry), RequestContext("GET", "/x"),
                                  Endpoint("x", ok_operation))

        assert response.status_code == 202
        assert response.body == b"accepted"
        assert len(transport.sent) == 1

    def test_post_hook_changes_to_locals_reach_the_body(self, tmp_path):
        def stamp(ctx):
            ctx.locals.message["stamped"] = True

        registry = HookRegistry()
        registry.register("getProject", Phase.post, stamp)
        registry.freeze()

        response, transport = run(make_pipeline(tmp_path, hooks=registry), RequestContext("GET", "/x"),
                                  Endpoint("getProject", ok_operation))

        assert response.status_code == 200
        assert response.body == b'{"ok": true, "stamped": true}'
        assert len(transport.sent) == 1


class TestErrorBoundary:
    def test_operation_error_becomes_response(self, tmp_path):
        def operation(ctx):
            raise PermissionDenied("Nope.")

        response, _ = run(make_pipeline(tmp_path), RequestContext("GET", "/x"), Endpoint("x", operation))
        assert response.status_code == 403
        assert response.body == b"Nope."

    def test_unexpected_error_becomes_500(self, tmp_path):
        def operation(ctx):
            raise KeyError("orgid")

        response, transport = run(make_pipeline(tmp_path), RequestContext("GET", "/x"), Endpoint("x", operation))
        assert response.status_code == 500
        assert len(transport.sent) == 1

    def test_preformatted_response_sent_once(self, tmp_path):
        def operation(ctx):
            ctx.locals.message = "raw"
            ctx.locals.formatted = True

        ctx = RequestContext("GET", "/x")
        response, transport = run(make_pipeline(tmp_path), ctx, Endpoint("x", operation))

        assert len(transport.sent) == 1
        assert ctx.locals.status_code is None
        assert response.body == b"raw"


class TestSecurityLog:
    def test_sensitive_endpoint_writes_request_and_response_lines(self, tmp_path):
        pipeline = make_pipeline(tmp_path)
        ctx = RequestContext("PATCH", "/api/users/alice/password", identity=Identity(id="u1", username="alice"))

        run(pipeline, ctx, Endpoint("patchPassword", ok_operation, security_sensitive=True))

        lines = (tmp_path / "logs" / "security.log").read_text().splitlines()
        assert lines[0] == 'PATCH "/api/users/alice/password" requested by u1'
        assert lines[1].startswith('PATCH "/api/users/alice/password" 200 u1 ')
        assert len(lines) == 2

    def test_regular_endpoint_does_not_touch_security_log(self, tmp_path):
        run(make_pipeline(tmp_path), RequestContext("GET", "/x"), Endpoint("x", ok_operation))
        assert not (tmp_path / "logs" / "security.log").exists()

    def test_unwritable_security_log_does_not_mask_response(self, tmp_path):
        # A directory where the log file should be makes every append fail
        (tmp_path / "logs" / "security.log").mkdir(parents=True)
        pipeline = make_pipeline(tmp_path)

        response, transport = run(
            pipeline, RequestContext("PATCH", "/x"), Endpoint("patchPassword", ok_operation, security_sensitive=True)
        )

        assert response.status_code == 200
        assert len(transport.sent) == 1


@pytest.mark.parametrize("method", ["get", "post", "put", "delete"])
def test_user_api_flags_per_method(method):
    settings = Settings.model_validate({"server": {"api": {"userAPI": {method: False}}}})
    assert settings.user_api_enabled(method.upper()) is False
    assert settings.user_api_enabled("PATCH") is True
