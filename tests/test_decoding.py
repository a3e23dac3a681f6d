"""Tests for frame_extractor.decoding: constrained decoding and frame assembly."""

import pytest
import torch

from frame_extractor.decoding import (
    SlotDecision, build_frame, build_slots, decide_slot, decode_slots, predicted_slot_name,
)

# Class indices: 0 from-B, 1 from-I, 2 to-B, 3 to-I, 4 NoSlot-B, 5 NoSlot-I | 6 NoSlot-B, 7 NoSlot-I
FLIGHT_RANGE = range(0, 3)
GREET_RANGE = range(3, 4)
NO_SLOT_INDICES = (2, 3)


def dist(*values):
    return torch.tensor(values, dtype=torch.float)


class TestDecideSlot:
    def test_beginning_is_accepted(self) -> None:
        decision = decide_slot(dist(.1, .0, .6, .1, .1, .0, .1, .0), [], FLIGHT_RANGE, NO_SLOT_INDICES)
        assert decision.class_index == 2
        assert decision.slot_index == 1
        assert decision.is_beginning
        assert decision.score == pytest.approx(.6)

    def test_indices_outside_the_intent_are_masked(self) -> None:
        decision = decide_slot(dist(.05, .0, .15, .0, .1, .0, .7, .0), [], FLIGHT_RANGE, NO_SLOT_INDICES)
        assert decision.class_index == 2

    def test_inside_after_same_slot_is_accepted(self) -> None:
        decision = decide_slot(dist(.1, .0, .1, .6, .1, .0, .1, .0), [1], FLIGHT_RANGE, NO_SLOT_INDICES)
        assert decision.class_index == 3
        assert decision.score == pytest.approx(.6)

    def test_inside_without_history_falls_back_to_no_slot(self) -> None:
        decision = decide_slot(dist(.1, .6, .05, .05, .1, .05, .05, .0), [], FLIGHT_RANGE, NO_SLOT_INDICES)
        assert decision.class_index == 4
        assert decision.slot_index == 2
        assert decision.score == pytest.approx(.1)

    def test_inside_after_other_slot_falls_back_to_no_slot(self) -> None:
        decision = decide_slot(dist(.1, .0, .1, .6, .1, .0, .1, .0), [0], FLIGHT_RANGE, NO_SLOT_INDICES)
        assert decision.class_index == 4

    def test_fallback_uses_the_no_slot_of_the_intent(self) -> None:
        decision = decide_slot(dist(.0, .0, .0, .0, .0, .0, .2, .8), [], GREET_RANGE, NO_SLOT_INDICES)
        assert decision.class_index == 6
        assert decision.score == pytest.approx(.2)

    def test_deterministic(self) -> None:
        classification = torch.softmax(torch.randn(8, generator=torch.Generator().manual_seed(3)), dim=0)
        decisions = {decide_slot(classification, [0, 1], FLIGHT_RANGE, NO_SLOT_INDICES) for _ in range(10)}
        assert len(decisions) == 1


class TestDecodeSlots:
    def test_leading_inside_decodes_to_no_slot(self) -> None:
        classifications = torch.stack([
            dist(.05, .05, .05, .7, .1, .05, .0, .0),  # "Inside" with no preceding "Beginning"
            dist(.1, .0, .7, .1, .1, .0, .0, .0),
        ])
        decisions = decode_slots(classifications, FLIGHT_RANGE, NO_SLOT_INDICES)
        assert decisions[0].slot_index == 2
        assert decisions[1].class_index == 2

    def test_history_enables_inside(self) -> None:
        classifications = torch.stack([
            dist(.1, .0, .7, .1, .1, .0, .0, .0),
            dist(.05, .05, .05, .7, .1, .05, .0, .0),
        ])
        decisions = decode_slots(classifications, FLIGHT_RANGE, NO_SLOT_INDICES)
        assert [d.class_index for d in decisions] == [2, 3]


class TestBuildSlots:
    def test_groups_beginning_and_inside(self, model) -> None:
        decisions = [SlotDecision(4, .9), SlotDecision(2, .8), SlotDecision(3, .7), SlotDecision(4, .6)]
        slots = build_slots(decisions, model.intents_configuration[0], 0)
        assert len(slots) == 1
        assert slots[0].name == "to"
        assert [t.index for t in slots[0].tokens] == [1, 2]
        assert [t.score for t in slots[0].tokens] == [.8, .7]

    def test_beginning_starts_a_new_slot(self, model) -> None:
        decisions = [SlotDecision(0, .9), SlotDecision(0, .8)]
        slots = build_slots(decisions, model.intents_configuration[0], 0)
        assert [[t.index for t in s.tokens] for s in slots] == [[0], [1]]

    def test_no_slot_is_dropped(self, model) -> None:
        decisions = [SlotDecision(4, .9), SlotDecision(5, .8)]
        assert build_slots(decisions, model.intents_configuration[0], 0) == []

    def test_slot_tokens_are_contiguous(self, model) -> None:
        generator = torch.Generator().manual_seed(7)
        for _ in range(20):
            classifications = torch.softmax(torch.randn(8, 8, generator=generator), dim=1)
            decisions = decode_slots(classifications, FLIGHT_RANGE, NO_SLOT_INDICES)
            for slot in build_slots(decisions, model.intents_configuration[0], 0):
                indices = [t.index for t in slot.tokens]
                assert indices == list(range(indices[0], indices[0] + len(indices)))
                assert slot.name in ("from", "to")


class TestBuildFrame:
    def test_frame_of_best_intent(self, model) -> None:
        classifications = torch.stack([
            dist(.1, .0, .1, .0, .7, .1, .0, .0),
            dist(.1, .0, .7, .1, .1, .0, .0, .0),
            dist(.05, .05, .05, .7, .1, .05, .0, .0),
        ])
        frame = build_frame(dist(.8, .2), classifications, model)
        assert frame.intent == "book_flight"
        assert frame.score == pytest.approx(.8)
        assert frame.distribution == pytest.approx({"book_flight": .8, "greet": .2})
        assert [s.name for s in frame.slots] == ["to"]

        as_dict = frame.to_dict(["to", "New", "York"])
        assert as_dict["slots"][0]["value"] == "New York"
        assert [d["name"] for d in as_dict["distribution"]] == ["book_flight", "greet"]

    def test_intent_without_slots_has_no_slots(self, model) -> None:
        classifications = torch.stack([dist(.1, .0, .8, .1, .0, .0, .0, .0)] * 3)
        frame = build_frame(dist(.3, .7), classifications, model)
        assert frame.intent == "greet"
        assert frame.slots == []


def test_predicted_slot_name(model) -> None:
    config = model.intents_configuration[0]
    assert predicted_slot_name(SlotDecision(2, .5), config, FLIGHT_RANGE) == "to"
    assert predicted_slot_name(SlotDecision(6, .5), config, FLIGHT_RANGE) is None
