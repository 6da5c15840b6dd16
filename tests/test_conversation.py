from __future__ import annotations

from agent_conductor.chat.conversation import (
    AssistantTurn,
    ErrorStep,
    StatusStep,
    ToolCallStep,
    ToolResultStep,
    UserTurn,
    build_history,
    can_retry,
    fold_event,
    start_exchange,
)
from agent_conductor.protocol.events import (
    Confirmation,
    ConfirmNeededEvent,
    DoneEvent,
    ErrorEvent,
    HistoryMessage,
    StatusEvent,
    TextChunkEvent,
    ThinkingEvent,
    ToolCallEvent,
    ToolCallInfo,
    ToolResultEvent,
    ToolResultInfo,
)


def test_start_exchange_appends_user_and_empty_assistant_turn() -> None:
    conversation = start_exchange((), "list my files")

    assert conversation == (UserTurn(query="list my files"), AssistantTurn())


def test_fold_builds_steps_and_final_answer() -> None:
    conversation = start_exchange((), "list my files")
    for event in [
        ThinkingEvent(request_id="r1", text="Looking at the folder."),
        ToolCallEvent(request_id="r1", tool_call=ToolCallInfo(id="tc-1", name="list_dir", args={"path": "~"})),
        ToolResultEvent(
            request_id="r1",
            tool_result=ToolResultInfo(id="tc-1", name="list_dir", success=True, output="a.txt", duration_ms=4),
        ),
        TextChunkEvent(request_id="r1", text="You have "),
        TextChunkEvent(request_id="r1", text="one file."),
        DoneEvent(request_id="r1"),
    ]:
        conversation = fold_event(conversation, event)

    turn = conversation[-1]
    assert [step.kind for step in turn.steps] == ["thinking", "tool_call", "tool_result"]
    assert isinstance(turn.steps[1], ToolCallStep) and turn.steps[1].args == {"path": "~"}
    assert isinstance(turn.steps[2], ToolResultStep) and turn.steps[2].output == "a.txt"
    assert turn.final_answer == "You have one file."


def test_fold_is_pure() -> None:
    before = start_exchange((), "hi")

    after = fold_event(before, StatusEvent(request_id="r1", status="Thinking..."))

    assert before[-1].steps == ()
    assert after[-1].steps == (StatusStep(text="Thinking...", at=after[-1].steps[0].at),)


def test_confirm_needed_and_done_do_not_add_steps() -> None:
    conversation = start_exchange((), "delete it")
    confirm = ConfirmNeededEvent(
        request_id="r1",
        confirmation=Confirmation(tool_call_id="tc-1", tool_name="delete_file", message="Delete?"),
    )

    assert fold_event(conversation, confirm) == conversation
    assert fold_event(conversation, DoneEvent(request_id="r1")) == conversation


def test_history_omits_empty_answers() -> None:
    conversation = start_exchange((), "first")
    conversation = fold_event(conversation, TextChunkEvent(request_id="r1", text="answer one"))
    conversation = start_exchange(conversation, "second")
    conversation = fold_event(conversation, ErrorEvent(request_id="r2", error="failed"))
    conversation = start_exchange(conversation, "third")

    assert build_history(conversation) == [
        HistoryMessage(role="user", content="first"),
        HistoryMessage(role="assistant", content="answer one"),
        HistoryMessage(role="user", content="second"),
        HistoryMessage(role="user", content="third"),
    ]


def test_retry_offered_after_error_without_answer() -> None:
    conversation = start_exchange((), "do it")
    failed = fold_event(conversation, ErrorEvent(request_id="r1", error="no provider"))

    assert isinstance(failed[-1].steps[0], ErrorStep)
    assert can_retry(failed, running=False)
    assert not can_retry(failed, running=True)
    assert not can_retry(conversation, running=False)

    answered = fold_event(failed, TextChunkEvent(request_id="r1", text="partial"))
    assert not can_retry(answered, running=False)
    assert not can_retry((), running=False)
