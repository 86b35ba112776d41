from roundsmatch.services.state_machine import batch_outcome, transition_batch_status


def test_running_moves_to_each_terminal_state():
    assert transition_batch_status("running", "complete") == "completed"
    assert transition_batch_status("running", "partial") == "partial"
    assert transition_batch_status("running", "fail") == "failed"
    assert transition_batch_status("running", "timeout") == "failed"
    assert transition_batch_status("running", "unknown") == "running"


def test_terminal_states_are_final():
    for terminal in ("completed", "partial", "failed"):
        for action in ("complete", "partial", "fail", "timeout"):
            assert transition_batch_status(terminal, action) == terminal


def test_batch_outcome_from_persistence_results():
    assert batch_outcome(3, 0) == "complete"
    assert batch_outcome(0, 0) == "complete"
    assert batch_outcome(3, 1) == "partial"
    assert batch_outcome(3, 3) == "fail"
