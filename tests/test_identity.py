from scribe.memory.identity import collection_id, content_hash, normalize_message_id
from scribe.memory.models import ChatContext, ChatMessage
from scribe.memory.templating import MacroRegistry, render_template
from scribe.utils.hashing import HashCache, rolling_hash


def test_message_id_prefers_send_date() -> None:
    assert normalize_message_id(ChatMessage(text="hi", send_date=1700000000000)) == "1700000000000"
    assert normalize_message_id(ChatMessage(text="hi", send_date=12.0)) == "12"
    assert normalize_message_id(ChatMessage(text="hi", send_date=" May 1, 2024 ")) == "May 1, 2024"


def test_message_id_fallbacks() -> None:
    assert normalize_message_id(ChatMessage(text="hi"), 4) == "idx_4"
    assert normalize_message_id(ChatMessage(text="ab")) == "h_00000c21"
    assert normalize_message_id(ChatMessage(text="", send_date="  ")).startswith("t_")


def test_content_hash_detects_edits() -> None:
    cache = HashCache()
    assert content_hash("before", hash_cache=cache) == rolling_hash("before")
    assert content_hash("before", hash_cache=cache) != content_hash("after", hash_cache=cache)
    assert content_hash("") == "0"


def test_collection_id_scopes_by_group_or_character() -> None:
    single = ChatContext(chat_id="ab", character_id="3")
    group = ChatContext(chat_id="ab", character_id="3", group_id="7")

    assert collection_id(single, prefix="scribe_") == "scribe_c3_00000c21"
    assert collection_id(group, prefix="scribe_") == "scribe_g7_00000c21"
    assert collection_id(ChatContext(chat_id="ab"), prefix="p_") == "p_c_00000c21"


def test_render_template_substitutes_and_unwraps_context_block() -> None:
    template = "{{#if context}}Before:\n{{context}}\n{{/if}}{{name}} said {{message}} {{unknown}}"

    with_context = render_template(template, {"context": "earlier", "name": "Ann", "message": "hi"})
    without = render_template(template, {"context": "", "name": "Ann", "message": "hi"})

    assert with_context == "Before:\nearlier\nAnn said hi {{unknown}}"
    assert without == "Ann said hi {{unknown}}"


def test_macro_registry_resolves_registered_names_only() -> None:
    macros = MacroRegistry()
    macros.register("scribe_memory", lambda: "remembered")

    assert macros.resolve("{{scribe_memory}} / {{user}}") == "remembered / {{user}}"
    assert "scribe_memory" in macros

    macros.unregister("scribe_memory")
    assert macros.value("scribe_memory") is None
