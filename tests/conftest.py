"""Shared fixtures: a small two-intent configuration and an untrained model."""

import pytest
import torch

from frame_extractor.model import FrameExtractorModel
from frame_extractor.utils import IntentConfiguration, SlotConfiguration

TOKEN_ENCODING_SIZE = 6
HIDDEN_SIZE = 4


@pytest.fixture
def intents_configuration():
    # Global slots: 0 from, 1 to, 2 NoSlot (book_flight) | 3 NoSlot (greet)
    return [
        IntentConfiguration("book_flight", (SlotConfiguration("from"), SlotConfiguration("to", required=True))),
        IntentConfiguration("greet", ()),
    ]


@pytest.fixture
def model(intents_configuration):
    torch.manual_seed(0)
    return FrameExtractorModel(
        name="test",
        intents_configuration=intents_configuration,
        token_encoding_size=TOKEN_ENCODING_SIZE,
        hidden_size=HIDDEN_SIZE,
    )


@pytest.fixture
def encodings():
    return torch.randn(5, TOKEN_ENCODING_SIZE, generator=torch.Generator().manual_seed(1))


@pytest.fixture
def dataset_dict():
    return {
        "intents": [
            {"name": "book_flight", "slots": [{"name": "from", "required": False},
                                              {"name": "to", "required": True, "default": "Rome"}]},
            {"name": "greet", "slots": []},
        ],
        "examples": [
            {"intent": "book_flight", "tokens": [
                {"form": "fly"},
                {"form": "to"},
                {"form": "New", "slot": {"name": "to", "iob": "B"}},
                {"form": "York", "slot": {"name": "to", "iob": "I"}},
            ]},
            {"intent": "greet", "tokens": [{"form": "hello"}, {"form": "there"}]},
        ],
    }
