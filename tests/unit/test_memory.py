from codeweave.memory import MemoryStore, sanitize_output


def test_sanitize_drops_progress_and_unwraps_messages():
    transcript = "\n".join(
        [
            "🧠 THINKING: figuring it out",
            "🔧 COMMAND: ls",
            "✅ COMMAND RESULT: file.py...",
            "💬 MESSAGE: Implemented the parser.",
            "⏱️  Tokens: 10in/5out",
        ]
    )
    assert sanitize_output(transcript) == "Implemented the parser.\n"


def test_sanitize_removes_prompt_echo_and_ansi():
    output = "Build the thing\n\x1b[32m💬 MESSAGE: built\x1b[0m\n"
    assert sanitize_output(output, prompt="Build the thing") == "built\n"


def test_write_overwrites_whole_file(tmp_path):
    store = MemoryStore(tmp_path / "memory")

    first = store.write("builder", "💬 MESSAGE: first attempt")
    second = store.write("builder", "💬 MESSAGE: second attempt")

    assert first == second == tmp_path / "memory" / "builder.md"
    assert store.read("builder") == "second attempt\n"
    assert [p.name for p in (tmp_path / "memory").iterdir()] == ["builder.md"]


def test_read_missing_agent(tmp_path):
    assert MemoryStore(tmp_path).read("nobody") == ""


def test_agent_ids_are_made_filesystem_safe(tmp_path):
    store = MemoryStore(tmp_path)
    assert store.path_for("../escape/me").parent == tmp_path
