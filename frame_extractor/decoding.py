from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Sequence

import torch

from .utils import NO_SLOT_NAME


class SlotDecision(NamedTuple):
    """ a classification index chosen for a token, with its raw score """
    class_index: int
    score: float

    @property
    def slot_index(self):
        return self.class_index // 2

    @property
    def is_beginning(self):
        return self.class_index % 2 == 0


@dataclass
class SlotToken:
    index: int
    score: float


@dataclass
class Slot:
    name: str
    tokens: List[SlotToken] = field(default_factory=list)

    def to_dict(self, token_forms=None):
        obj = {"name": self.name, "tokens": [{"index": t.index, "score": t.score} for t in self.tokens]}
        if token_forms is not None:
            obj["value"] = " ".join(token_forms[t.index] for t in self.tokens)
        return obj


@dataclass
class Frame:
    intent: str
    score: float
    distribution: Dict[str, float]
    slots: List[Slot]

    def to_dict(self, token_forms=None):
        return {
            "intent": self.intent,
            "score": self.score,
            "slots": [s.to_dict(token_forms) for s in self.slots],
            "distribution": [
                {"name": name, "score": score}
                for name, score in sorted(self.distribution.items(), key=lambda x: x[1], reverse=True)
            ],
        }


def decide_slot(classification: torch.Tensor,
                prev_slot_indices: Sequence[int],
                slots_range: range,
                no_slot_indices: Sequence[int]) -> SlotDecision:
    """
    Choose the slot class of a token among the ones legal for an intent.

    Classification indices whose slot falls outside `slots_range` are masked. An "Inside"
    class is accepted only if the previous token was assigned the same slot. When nothing
    survives the mask, or the best class is an unsupported "Inside", the no-slot of the
    range is chosen (as Beginning).

    Args:
        classification (Tensor): raw distribution over all the slot classes
        prev_slot_indices: global slot indices chosen for the previous tokens
        slots_range (range): global slot indices of the intent
        no_slot_indices: global indices of the no-slot entries
    Returns:
        SlotDecision: the class index chosen and its raw score
    """
    first = 2 * slots_range.start
    last = min(2 * slots_range.stop, classification.numel())

    if first < last:
        arg_max = first + int(classification[first:last].argmax())
        slot_index = arg_max // 2
        is_inside = arg_max % 2 != 0
        invalid_inside = is_inside and (not prev_slot_indices or prev_slot_indices[-1] != slot_index)
        if not invalid_inside:
            return SlotDecision(arg_max, float(classification[arg_max]))

    no_slot_index = next(i for i in no_slot_indices if i in slots_range)
    return SlotDecision(2 * no_slot_index, float(classification[2 * no_slot_index]))


def decode_slots(slots_classifications, slots_range, no_slot_indices) -> List[SlotDecision]:
    prev_slot_indices = []
    decisions = []
    for classification in slots_classifications:
        decision = decide_slot(classification, prev_slot_indices, slots_range, no_slot_indices)
        prev_slot_indices.append(decision.slot_index)
        decisions.append(decision)
    return decisions


def build_slots(decisions: Sequence[SlotDecision], intent_config, slots_offset) -> List[Slot]:
    """
    Group the decisions of consecutive tokens into slots, discarding the no-slot ones.
    """
    found = []  # (global slot index, Slot)
    for token_index, decision in enumerate(decisions):
        token = SlotToken(index=token_index, score=decision.score)
        if found:
            last_index, last_slot = found[-1]
            continuing = (not decision.is_beginning
                          and last_index == decision.slot_index
                          and last_slot.tokens[-1].index == token_index - 1)
            if continuing:
                last_slot.tokens.append(token)
                continue
        name = intent_config.slot_names[decision.slot_index - slots_offset]
        found.append((decision.slot_index, Slot(name=name, tokens=[token])))

    return [slot for _, slot in found if slot.name != NO_SLOT_NAME]


def build_frame(intents_distribution, slots_classifications, model) -> Frame:
    intent_index = int(intents_distribution.argmax())
    intent_config = model.intents_configuration[intent_index]
    decisions = decode_slots(
        slots_classifications, model.slots_range(intent_index), model.no_slot_indices)

    return Frame(
        intent=intent_config.name,
        score=float(intents_distribution[intent_index]),
        distribution={c.name: float(p) for c, p in zip(model.intents_configuration, intents_distribution)},
        slots=build_slots(decisions, intent_config, model.slots_offsets[intent_index]))


def predicted_slot_name(decision: SlotDecision, intent_config, slots_range) -> Optional[str]:
    """The slot name of a decision, or None when it lies outside the intent range."""
    if decision.slot_index not in slots_range:
        return None
    return intent_config.slot_names[decision.slot_index - slots_range.start]
