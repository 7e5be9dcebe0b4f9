from credibility.questionnaire import normalize_questionnaire
from credibility.scheduler import plan_batches, slice_batch


def _questionnaire(sizes: list[int]):
    return normalize_questionnaire(
        {
            "sections": [
                {
                    "id": f"s{s}",
                    "title": f"Section {s}",
                    "questions": [{"text": f"Question {s}.{q}?"} for q in range(size)],
                }
                for s, size in enumerate(sizes)
            ]
        }
    )


def test_batches_cover_every_question_exactly_once() -> None:
    plan = plan_batches(_questionnaire([3, 4, 5]), batch_size=5)
    assert plan.total_questions == 12
    assert plan.total_batches == 3

    seen: list[int] = []
    for index in range(plan.total_batches):
        batch = slice_batch(plan.questions, index, plan.batch_size)
        assert len(batch.questions) <= 5
        seen.extend(item.global_index for item in batch.questions)
    assert seen == list(range(12))


def test_last_batch_is_flagged() -> None:
    plan = plan_batches(_questionnaire([7]), batch_size=5)
    first = slice_batch(plan.questions, 0, 5)
    last = slice_batch(plan.questions, 1, 5)
    assert not first.is_last_batch
    assert last.is_last_batch
    assert (last.start_index, last.end_index) == (5, 7)


def test_batch_index_beyond_range_is_empty_and_last() -> None:
    plan = plan_batches(_questionnaire([4]), batch_size=2)
    batch = slice_batch(plan.questions, 9, 2)
    assert batch.questions == []
    assert batch.is_last_batch
    assert batch.start_index == batch.end_index == 4


def test_batches_may_span_sections() -> None:
    plan = plan_batches(_questionnaire([1, 1, 1]), batch_size=2)
    batch = slice_batch(plan.questions, 0, 2)
    assert [item.section_id for item in batch.questions] == ["s0", "s1"]


def test_invalid_batch_size_and_index() -> None:
    plan = plan_batches(_questionnaire([2]), batch_size=1)
    for args in ((plan.questions, 0, 0), (plan.questions, -1, 1)):
        try:
            slice_batch(*args)
            raise AssertionError("Expected ValueError.")
        except ValueError as exc:
            assert ">= " in str(exc)
