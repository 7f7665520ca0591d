import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import json
from agent_models import AgentState, ConversationContext, Intention
from state_machine import BASE_TRANSITIONS, AgentStateMachine, Transition


def _assert(cond, msg):
    if not cond:
        raise AssertionError(msg)


def test_default_table_is_sound():
    sm = AgentStateMachine()
    _assert(sm.validate_configuration() == [], f"Issues: {sm.validate_configuration()}")
    for state in AgentState:
        _assert(sm.get_available_actions(state), f"No actions for {state.value}")


def test_transition_success_and_failure():
    sm = AgentStateMachine()
    ok = sm.transition(Intention.JOB_INQUIRY, {"job_hint": "backend"})
    _assert(ok.success and ok.new_state == AgentState.JOB_DISCUSSION, "greeting -> job_discussion failed")
    _assert(ok.previous_state == AgentState.GREETING, "Previous state not reported")
    _assert(sm.get_context().data["job_hint"] == "backend", "Context data not merged on success")

    bad = sm.transition(Intention.GREETING, {"ignored": True})
    _assert(not bad.success and sm.current_state == AgentState.JOB_DISCUSSION, "Failed transition moved the state")
    _assert(
        bad.reason == "No valid transition found for intention: greeting from state: job_discussion",
        f"Unexpected reason {bad.reason}",
    )
    _assert("ignored" not in sm.get_context().data, "Context data merged on failure")
    _assert(bad.available_actions, "Failure should still report available actions")


def test_guard_selects_between_duplicate_rules():
    slow = AgentStateMachine(ConversationContext(current_state=AgentState.CV_PROCESSING))
    _assert(slow.transition(Intention.EXPERIENCE_VALIDATION).new_state == AgentState.SKILL_ASSESSMENT, "Default path")

    fast = AgentStateMachine(ConversationContext(current_state=AgentState.TECHNICAL_VALIDATION))
    res = fast.transition(Intention.EXPERIENCE_VALIDATION, {"fast_track": True})
    _assert(res.new_state == AgentState.FINAL_INTERVIEW, f"Fast track path not taken: {res.new_state}")


def test_force_transition_and_reset():
    sm = AgentStateMachine()
    sm.transition(Intention.SALARY_QUESTION)
    res = sm.force_transition(AgentState.GREETING, reason="security_block")
    _assert(res.success and sm.current_state == AgentState.GREETING, "Force transition failed")
    _assert(sm.get_context().data["force_transition_reason"] == "security_block", "Reason not recorded")
    history = sm.get_state_history()
    _assert([h.to_state for h in history] == [AgentState.Q_AND_A, AgentState.GREETING], "History mismatch")
    _assert(history[-1].forced and history[-1].trigger is None, "Forced change not marked")

    sm.reset()
    _assert(sm.current_state == AgentState.GREETING and sm.previous_state is None, "Reset state")
    _assert(sm.get_state_history() == [] and sm.get_context().data == {}, "Reset should clear history and data")


def test_custom_transitions_are_appended():
    custom = [Transition(AgentState.CLOSING, Intention.GREETING, AgentState.GREETING, name="closing->greeting")]
    sm = AgentStateMachine(ConversationContext(current_state=AgentState.CLOSING), custom_transitions=custom)
    res = sm.transition(Intention.GREETING)
    _assert(res.success and res.rule == "closing->greeting", f"Custom rule not used: {res.rule}")
    _assert(sm.transitions[:len(BASE_TRANSITIONS)] == BASE_TRANSITIONS, "Base rules must come first")
    _assert(sm.transitions[-1].label == "closing->greeting", "Custom rule should be last")


def test_guard_errors_propagate():
    def boom(data):
        raise RuntimeError("guard failure")

    custom = [Transition(AgentState.GREETING, Intention.GREETING, AgentState.Q_AND_A, guard=boom)]
    sm = AgentStateMachine(custom_transitions=custom)
    try:
        sm.transition(Intention.GREETING)
    except RuntimeError:
        pass
    else:
        raise AssertionError("Guard exception was swallowed")
    _assert(sm.current_state == AgentState.GREETING, "State changed despite guard error")


def test_history_can_be_disabled():
    sm = AgentStateMachine(enable_state_history=False)
    sm.transition(Intention.FAREWELL)
    _assert(sm.current_state == AgentState.CLOSING and sm.get_state_history() == [], "History should stay empty")


def test_unreachable_state_is_reported():
    table = [Transition(AgentState.GREETING, Intention.JOB_INQUIRY, AgentState.JOB_DISCUSSION)]
    issues = AgentStateMachine(transitions=table).validate_configuration()
    _assert(any("closing is unreachable" in i for i in issues), f"Unreachable state not reported: {issues}")


if __name__ == "__main__":
    test_default_table_is_sound()
    test_transition_success_and_failure()
    test_guard_selects_between_duplicate_rules()
    test_force_transition_and_reset()
    test_custom_transitions_are_appended()
    test_guard_errors_propagate()
    test_history_can_be_disabled()
    test_unreachable_state_is_reported()
    print(json.dumps({"ok": True}))
