"""Dashboard REST API, exercised end to end over an in-process ASGI transport."""

import json
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from guildhall.bot.services.platform import RoleInfo
from guildhall.web.crud import EntitlementOperations

from mocks import (
    ADMIN_ID,
    CHANNEL_ID,
    GUILD_ID,
    MOD_ROLE_ID,
    ROLE_ID,
    USER_ID,
    VALID_SIGNATURE,
    checkout_completed,
)

TEMPLATES_URL = f"/api/guild/{GUILD_ID}/templates"


async def grant_premium(context, tier="monthly"):
    async with context.session() as session:
        await EntitlementOperations(session, context.payments).override(GUILD_ID, USER_ID, tier, ADMIN_ID)


async def create_template(client, headers, **overrides):
    body = {"name": "Welcome", "content": "Hello everyone"}
    body.update(overrides)
    return await client.post(TEMPLATES_URL, json=body, headers=headers)


class TestHealthAndErrors:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["botConnected"] is True
        assert response.headers["x-request-id"]

    async def test_request_id_is_echoed(self, client):
        response = await client.get("/health", headers={"x-request-id": "req-42"})

        assert response.headers["x-request-id"] == "req-42"

    async def test_unknown_route_uses_envelope(self, client):
        response = await client.get("/api/nowhere")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "API endpoint not found"}


class TestAuth:
    async def test_generate_and_verify_token(self, client):
        response = await client.post("/auth/generate-token", json={"userId": "dash-1", "discordId": USER_ID})
        assert response.status_code == 200
        token = response.json()["data"]["token"]

        response = await client.post("/auth/verify-token", headers={"Authorization": f"Bearer {token}"})

        assert response.json() == {
            "success": True,
            "data": {"valid": True, "user": {"userId": "dash-1", "discordId": USER_ID}},
        }

    async def test_generate_token_requires_both_ids(self, client):
        response = await client.post("/auth/generate-token", json={"userId": "dash-1"})

        assert response.status_code == 400
        assert response.json()["success"] is False

    async def test_missing_bearer_is_401(self, client):
        response = await client.post("/auth/verify-token")

        assert response.status_code == 401
        assert response.json()["error"] == "Authorization header missing or invalid"

    async def test_bad_token_is_403(self, client):
        response = await client.post("/auth/verify-token", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 403
        assert response.json()["error"] == "Invalid or expired token"

    async def test_expired_token_is_403(self, client, settings):
        token = jwt.encode(
            {
                "userId": "dash-1",
                "discordId": USER_ID,
                "exp": datetime.now(timezone.utc) - timedelta(minutes=1),
            },
            settings.dashboard_jwt_secret,
            algorithm="HS256",
        )

        response = await client.post("/auth/verify-token", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403

    async def test_bot_info(self, client, user_headers):
        response = await client.get("/auth/bot-info", headers=user_headers)

        data = response.json()["data"]
        assert data["connected"] is True
        assert data["guildCount"] == 1
        assert "client_id=123456789012345678" in data["inviteUrl"]


class TestPremiumApi:
    async def test_guild_without_premium(self, client, user_headers):
        response = await client.get(f"/api/guild/{GUILD_ID}/premium", headers=user_headers)

        assert response.json() == {"success": True, "data": {"isPremium": False, "subscription": None}}

    async def test_checkout_session_carries_guild_and_buyer(self, client, user_headers, payments):
        response = await client.post(
            "/api/checkout-session",
            json={
                "priceId": "price_monthly",
                "guildId": GUILD_ID,
                "successUrl": "https://dashboard.example.com/success",
                "cancelUrl": "https://dashboard.example.com/cancel",
            },
            headers=user_headers,
        )

        assert response.status_code == 200
        assert response.json()["data"] == {"sessionId": "cs_test_1", "url": "https://checkout.stripe.test/pay"}
        assert payments.checkouts[0]["metadata"] == {"guildId": GUILD_ID, "userId": USER_ID}

    async def test_checkout_session_requires_fields(self, client, user_headers):
        response = await client.post("/api/checkout-session", json={"priceId": "price_monthly"}, headers=user_headers)

        assert response.status_code == 400

    async def test_override_requires_admin(self, client, user_headers):
        response = await client.post(
            "/api/admin/override",
            json={"guildId": GUILD_ID, "userId": USER_ID, "tier": "monthly"},
            headers=user_headers,
        )

        assert response.status_code == 403
        assert response.json()["error"] == "Admin access required"

    async def test_admin_override_grants_premium(self, client, admin_headers, user_headers):
        response = await client.post(
            "/api/admin/override",
            json={"guildId": GUILD_ID, "userId": USER_ID, "tier": "lifetime"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["data"]["externalSubscriptionId"] == "admin_override"

        response = await client.get(f"/api/guild/{GUILD_ID}/premium", headers=user_headers)
        data = response.json()["data"]
        assert data["isPremium"] is True
        assert data["subscription"]["tier"] == "lifetime"

    async def test_override_rejects_unknown_tier(self, client, admin_headers):
        response = await client.post(
            "/api/admin/override",
            json={"guildId": GUILD_ID, "userId": USER_ID, "tier": "weekly"},
            headers=admin_headers,
        )

        assert response.status_code == 400

    async def test_cancel_requires_ownership(self, client, admin_headers, context, payments):
        payments.add_subscription("sub_123")
        async with context.session() as session:
            await EntitlementOperations(session, payments).activate("sub_123", "cus_test", USER_ID, GUILD_ID, "monthly")

        response = await client.post("/api/subscription/sub_123/cancel", headers=admin_headers)

        assert response.status_code == 404
        assert payments.canceled == []

    async def test_owner_can_cancel(self, client, user_headers, context, payments):
        payments.add_subscription("sub_123")
        async with context.session() as session:
            await EntitlementOperations(session, payments).activate("sub_123", "cus_test", USER_ID, GUILD_ID, "monthly")

        response = await client.post(
            "/api/subscription/sub_123/cancel", json={"reason": "too expensive"}, headers=user_headers
        )

        assert response.status_code == 200
        assert payments.canceled == ["sub_123"]
        premium = await client.get(f"/api/guild/{GUILD_ID}/premium", headers=user_headers)
        assert premium.json()["data"]["isPremium"] is False

    async def test_admin_overrides_cannot_be_canceled_through_stripe(self, client, user_headers, context, payments):
        await grant_premium(context)

        response = await client.post("/api/subscription/admin_override/cancel", headers=user_headers)

        assert response.status_code == 400
        assert payments.canceled == []

    async def test_user_premium_lists_live_entitlements(self, client, user_headers, context):
        await grant_premium(context)

        response = await client.get("/api/user/premium", headers=user_headers)

        assert [item["guildId"] for item in response.json()["data"]] == [GUILD_ID]


class TestTemplatesApi:
    async def test_multi_embed_template_needs_premium(self, client, admin_headers, context):
        embeds = [{"title": "One"}, {"title": "Two"}]

        response = await create_template(client, admin_headers, embeds=embeds)
        assert response.status_code == 403
        assert response.json()["error"] == "Premium required for advanced template features"

        await grant_premium(context)

        response = await create_template(client, admin_headers, embeds=embeds)
        assert response.status_code == 201
        assert [embed["title"] for embed in response.json()["data"]["embeds"]] == ["One", "Two"]

    async def test_single_embed_template_is_free(self, client, admin_headers):
        response = await create_template(client, admin_headers, embeds=[{"title": "One"}])

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["guildId"] == GUILD_ID
        assert data["createdBy"] == ADMIN_ID
        assert data["isActive"] is True

    async def test_invalid_template_reports_every_error(self, client, admin_headers):
        response = await create_template(client, admin_headers, name="", content="")

        assert response.status_code == 400
        assert response.json()["errors"] == ["Template name is required", "Template content is required"]

    async def test_malformed_embeds_are_reported_with_the_other_errors(self, client, admin_headers):
        response = await create_template(client, admin_headers, name="", content="", embeds="nope")

        assert response.status_code == 400
        assert response.json()["errors"] == [
            "Template name is required",
            "Template content is required",
            "Embeds must be an array",
        ]

    async def test_embeds_must_be_objects(self, client, admin_headers):
        response = await create_template(client, admin_headers, embeds=[1])

        assert response.status_code == 400
        assert response.json()["errors"] == ["Embed 1 must be an object"]

    async def test_component_children_must_be_objects(self, client, admin_headers, context):
        await grant_premium(context)

        response = await create_template(client, admin_headers, components=[{"type": 1, "components": [1]}])

        assert response.status_code == 400
        assert response.json()["errors"] == ["Component 1 in row 1 must be an object"]

    async def test_members_can_view_but_not_manage(self, client, admin_headers, user_headers):
        created = await create_template(client, admin_headers)
        template_id = created.json()["data"]["id"]

        assert (await client.get(TEMPLATES_URL, headers=user_headers)).status_code == 200
        assert (await client.get(f"{TEMPLATES_URL}/{template_id}", headers=user_headers)).status_code == 200
        assert (await create_template(client, user_headers)).status_code == 403
        assert (await client.delete(f"{TEMPLATES_URL}/{template_id}", headers=user_headers)).status_code == 403

    async def test_non_members_are_refused(self, client, stranger_headers):
        response = await client.get(TEMPLATES_URL, headers=stranger_headers)

        assert response.status_code == 403

    async def test_update_get_and_delete(self, client, admin_headers):
        created = await create_template(client, admin_headers)
        url = f"{TEMPLATES_URL}/{created.json()['data']['id']}"

        response = await client.put(url, json={"content": "Updated"}, headers=admin_headers)
        assert response.json()["data"]["content"] == "Updated"
        assert response.json()["data"]["name"] == "Welcome"

        assert (await client.delete(url, headers=admin_headers)).status_code == 200
        assert (await client.get(url, headers=admin_headers)).status_code == 404
        assert (await client.get(TEMPLATES_URL, headers=admin_headers)).json()["data"] == []

    async def test_update_adding_components_needs_premium(self, client, admin_headers):
        created = await create_template(client, admin_headers)
        url = f"{TEMPLATES_URL}/{created.json()['data']['id']}"

        response = await client.put(
            url,
            json={"components": [{"type": 1, "components": [{"type": 2, "customId": "go"}]}]},
            headers=admin_headers,
        )

        assert response.status_code == 403

    async def test_send_to_channel(self, client, admin_headers, platform):
        platform.add_channel(CHANNEL_ID, GUILD_ID)
        created = await create_template(client, admin_headers)
        url = f"{TEMPLATES_URL}/{created.json()['data']['id']}/send"

        response = await client.post(url, json={"channelId": CHANNEL_ID}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["data"]["channelId"] == CHANNEL_ID
        assert platform.sent[0][1].content == "Hello everyone"

    async def test_send_to_unknown_channel(self, client, admin_headers):
        created = await create_template(client, admin_headers)
        url = f"{TEMPLATES_URL}/{created.json()['data']['id']}/send"

        response = await client.post(url, json={"channelId": CHANNEL_ID}, headers=admin_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "Channel not found"

    async def test_schedule_needs_premium(self, client, admin_headers, context):
        created = await create_template(client, admin_headers)
        url = f"{TEMPLATES_URL}/{created.json()['data']['id']}/schedule"
        body = {"scheduledFor": "2030-01-01T10:00:00Z"}

        assert (await client.post(url, json=body, headers=admin_headers)).status_code == 403

        await grant_premium(context)
        response = await client.post(url, json=body, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["data"]["scheduledFor"].startswith("2030-01-01T10:00:00")

    async def test_schedule_requires_a_date(self, client, admin_headers):
        created = await create_template(client, admin_headers)
        url = f"{TEMPLATES_URL}/{created.json()['data']['id']}/schedule"

        response = await client.post(url, json={}, headers=admin_headers)

        assert response.status_code == 400

    async def test_routes_needing_discord_fail_without_the_bot(self, client, admin_headers, context):
        context.platform = None

        response = await client.get(TEMPLATES_URL, headers=admin_headers)

        assert response.status_code == 500
        assert response.json()["success"] is False


class TestGuildConfigApi:
    async def test_read_and_update_config(self, client, admin_headers, user_headers):
        response = await client.get(f"/api/guild/{GUILD_ID}/config", headers=user_headers)
        assert response.json()["data"]["autoAssignRoles"] == []

        response = await client.put(
            f"/api/guild/{GUILD_ID}/config",
            json={"autoAssignRoles": [ROLE_ID], "welcomeMessage": "Hi {user}"},
            headers=admin_headers,
        )
        data = response.json()["data"]
        assert data["autoAssignRoles"] == [ROLE_ID]
        assert data["welcomeMessage"] == "Hi {user}"
        assert data["updatedBy"] == ADMIN_ID

    async def test_members_cannot_update_config(self, client, user_headers):
        response = await client.put(
            f"/api/guild/{GUILD_ID}/config", json={"adminRoles": [ROLE_ID]}, headers=user_headers
        )

        assert response.status_code == 403

    async def test_user_permissions(self, client, user_headers):
        response = await client.get(f"/api/guild/{GUILD_ID}/user/{ADMIN_ID}/permissions", headers=user_headers)

        assert response.json()["data"] == {"isAdmin": True, "isModerator": True}

    async def test_roles_skip_managed_and_everyone(self, client, user_headers, platform):
        platform.add_role(RoleInfo(id=ROLE_ID, name="Member", position=1))
        platform.add_role(RoleInfo(id=MOD_ROLE_ID, name="Moderator", position=5))
        platform.add_role(RoleInfo(id="121212121212121212", name="Some Bot", position=9, managed=True))

        response = await client.get(f"/api/guild/{GUILD_ID}/roles", headers=user_headers)

        assert [role["name"] for role in response.json()["data"]] == ["Moderator", "Member"]

    async def test_channels_are_text_only_and_sorted(self, client, user_headers, platform):
        platform.add_channel("131313131313131313", GUILD_ID, name="zeta")
        platform.add_channel("141414141414141414", GUILD_ID, name="alpha")
        platform.add_channel("151515151515151515", GUILD_ID, name="voice", is_text=False)

        response = await client.get(f"/api/guild/{GUILD_ID}/channels", headers=user_headers)

        assert [channel["name"] for channel in response.json()["data"]] == ["alpha", "zeta"]

    async def test_audit_logs_filter_and_search(self, client, admin_headers):
        created = await create_template(client, admin_headers)
        template_id = created.json()["data"]["id"]
        await client.put(
            f"/api/guild/{GUILD_ID}/config", json={"welcomeChannelId": CHANNEL_ID}, headers=admin_headers
        )

        response = await client.get(
            f"/api/guild/{GUILD_ID}/audit-logs", params={"action": "TEMPLATE_CREATED"}, headers=admin_headers
        )
        entries = response.json()["data"]
        assert len(entries) == 1
        assert entries[0]["userId"] == ADMIN_ID
        assert entries[0]["details"]["templateId"] == template_id
        assert entries[0]["ipAddress"] == "127.0.0.1"

        response = await client.get(
            f"/api/guild/{GUILD_ID}/audit-logs", params={"search": template_id[:8]}, headers=admin_headers
        )
        assert [entry["action"] for entry in response.json()["data"]] == ["TEMPLATE_CREATED"]

    async def test_audit_logs_need_manage_rights(self, client, user_headers):
        response = await client.get(f"/api/guild/{GUILD_ID}/audit-logs", headers=user_headers)

        assert response.status_code == 403


class TestStripeWebhook:
    async def post_event(self, client, event, signature=VALID_SIGNATURE):
        return await client.post(
            "/webhooks/stripe",
            content=json.dumps(event),
            headers={"stripe-signature": signature, "content-type": "application/json"},
        )

    async def test_bad_signature_is_400(self, client):
        response = await self.post_event(client, checkout_completed(), signature="t=1,v1=forged")

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid signature"}

    async def test_checkout_activates_premium(self, client, payments, user_headers):
        payments.add_subscription("sub_123")

        response = await self.post_event(client, checkout_completed())

        assert response.json() == {"success": True, "data": {"received": True}}
        premium = await client.get(f"/api/guild/{GUILD_ID}/premium", headers=user_headers)
        assert premium.json()["data"]["isPremium"] is True

    async def test_handler_failure_is_500(self, client, payments):
        payments.fail_retrieve = True

        response = await self.post_event(client, checkout_completed())

        assert response.status_code == 500
        assert response.json()["error"] == "Webhook handler failed"

    @pytest.mark.parametrize("event_type", ["customer.created", "charge.refunded"])
    async def test_unhandled_events_are_acknowledged(self, client, event_type):
        response = await self.post_event(client, {"id": "evt_1", "type": event_type, "data": {"object": {}}})

        assert response.status_code == 200
