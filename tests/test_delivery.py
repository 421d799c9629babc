"""Template rendering and the delivery engine."""

import hikari
import pytest

from guildhall.bot.services.delivery import (
    ButtonComponent,
    DeliveryEngine,
    SelectMenuComponent,
    render,
    render_component,
    render_embed,
)
from guildhall.shared.exceptions import DeliveryError, NotFoundError
from guildhall.web.models import AuditAction, MessageTemplate

from mocks import ADMIN_ID, CHANNEL_ID, GUILD_ID, OTHER_GUILD_ID


def make_template(**overrides) -> MessageTemplate:
    fields = {
        "guild_id": GUILD_ID,
        "name": "Launch",
        "content": "We are live",
        "created_by": ADMIN_ID,
    }
    fields.update(overrides)
    return MessageTemplate(**fields)


class TestRendering:
    def test_two_embeds_and_a_button_row_keep_order(self):
        template = make_template(
            embeds=[{"title": "First"}, {"title": "Second"}],
            components=[
                {
                    "type": 1,
                    "components": [{"type": 2, "label": "Open", "custom_id": "open", "style": 1}],
                }
            ],
        )

        payload = render(template)

        assert payload.content == "We are live"
        assert [embed.title for embed in payload.embeds] == ["First", "Second"]
        assert len(payload.components) == 1
        assert payload.components[0].components == [
            ButtonComponent(custom_id="open", label="Open", style=1)
        ]

    def test_embed_fields_footer_and_images(self):
        embed = render_embed(
            {
                "title": "Rules",
                "description": "Read them",
                "color": 0x5865F2,
                "fields": [{"name": "One", "value": "Be kind", "inline": True}],
                "thumbnail": {"url": "https://example.com/thumb.png"},
                "image": "https://example.com/image.png",
                "footer": {"text": "Mods", "iconUrl": "https://example.com/icon.png"},
                "timestamp": "2030-01-01T00:00:00Z",
            }
        )

        assert embed.color == hikari.Color(0x5865F2)
        assert embed.fields[0].name == "One"
        assert embed.fields[0].is_inline is True
        assert embed.thumbnail.url == "https://example.com/thumb.png"
        assert embed.image.url == "https://example.com/image.png"
        assert embed.footer.text == "Mods"
        assert embed.timestamp.year == 2030

    def test_select_menu_defaults(self):
        menu = render_component({"type": 3, "options": [{"label": "Red", "value": "red"}]})

        assert isinstance(menu, SelectMenuComponent)
        assert menu.custom_id.startswith("select_")
        assert menu.placeholder == "Select an option"
        assert (menu.min_values, menu.max_values) == (1, 1)
        assert menu.options[0].value == "red"

    def test_button_without_custom_id_gets_one(self):
        button = render_component({"type": 2})

        assert button.custom_id.startswith("btn_")
        assert button.label == "Button"

    def test_unsupported_components_are_dropped(self):
        template = make_template(
            components=[
                {"type": 1, "components": [{"type": 4, "label": "Text input"}, {"type": 2, "custom_id": "ok"}]}
            ]
        )

        payload = render(template)

        assert [c.custom_id for c in payload.components[0].components] == ["ok"]

    def test_rows_left_empty_are_dropped(self):
        template = make_template(
            components=[
                {"type": 1, "components": [{"type": 4, "label": "Text input"}]},
                {"type": 1, "components": [{"type": 2, "custom_id": "ok"}]},
            ]
        )

        payload = render(template)

        assert len(payload.components) == 1
        assert payload.components[0].components[0].custom_id == "ok"


class TestDeliveryEngine:
    @pytest.fixture
    async def stored_template(self, templates):
        return await templates.create(
            {
                "name": "Launch",
                "content": "We are live",
                "guild_id": GUILD_ID,
                "created_by": ADMIN_ID,
                "embeds": [{"title": "News"}],
            },
            actor_id=ADMIN_ID,
        )

    async def test_send_delivers_and_audits(self, session, platform, stored_template, audit):
        platform.add_channel(CHANNEL_ID, GUILD_ID)

        result = await DeliveryEngine(session, platform).send(
            stored_template.id, GUILD_ID, CHANNEL_ID, actor_id=ADMIN_ID
        )

        channel_id, payload = platform.sent[0]
        assert channel_id == CHANNEL_ID
        assert payload.embeds[0].title == "News"
        assert result["channelId"] == CHANNEL_ID
        assert result["messageId"]

        entries = await audit.get_logs(GUILD_ID, action=AuditAction.MESSAGE_SENT)
        assert entries[0].details == {
            "templateId": str(stored_template.id),
            "channelId": CHANNEL_ID,
            "messageId": result["messageId"],
        }

    async def test_unknown_guild(self, session, platform, stored_template):
        del platform.guilds[GUILD_ID]

        with pytest.raises(NotFoundError, match="Guild not found"):
            await DeliveryEngine(session, platform).send(stored_template.id, GUILD_ID, CHANNEL_ID, ADMIN_ID)

    async def test_channel_must_belong_to_the_guild(self, session, platform, stored_template):
        platform.add_channel(CHANNEL_ID, OTHER_GUILD_ID)

        with pytest.raises(NotFoundError, match="Channel not found"):
            await DeliveryEngine(session, platform).send(stored_template.id, GUILD_ID, CHANNEL_ID, ADMIN_ID)
        assert platform.sent == []

    async def test_channel_must_be_text(self, session, platform, stored_template):
        platform.add_channel(CHANNEL_ID, GUILD_ID, is_text=False)

        with pytest.raises(NotFoundError):
            await DeliveryEngine(session, platform).send(stored_template.id, GUILD_ID, CHANNEL_ID, ADMIN_ID)

    async def test_platform_failure_is_not_audited(self, session, platform, stored_template, audit):
        platform.add_channel(CHANNEL_ID, GUILD_ID)
        platform.fail_sends = True

        with pytest.raises(DeliveryError):
            await DeliveryEngine(session, platform).send(stored_template.id, GUILD_ID, CHANNEL_ID, ADMIN_ID)
        assert await audit.get_logs(GUILD_ID, action=AuditAction.MESSAGE_SENT) == []
