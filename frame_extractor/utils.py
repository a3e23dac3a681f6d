import json
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import torch
import torch.nn as nn
from sklearn.model_selection import train_test_split
from tqdm import tqdm

DEVICE = torch.device("cuda:0" if torch.cuda.is_available() else "cpu")

# Reserved slot name of the tokens that are not part of any slot
NO_SLOT_NAME = "NoSlot"

# Constant for the padding token's ID in the encoder vocabulary
PAD_TOKEN = 0


class InvalidConfiguration(ValueError):
    pass


class InvalidIntentConfiguration(ValueError):
    pass


class InvalidExample(ValueError):
    def __init__(self, index, message):
        super().__init__(f"[Example #{index}] {message}")
        self.index = index


class IOBTag(Enum):
    BEGINNING = "B"
    INSIDE = "I"

    @classmethod
    def from_annotation(cls, annotation):
        for tag in cls:
            if tag.value == annotation:
                return tag
        raise ValueError(f"Invalid IOB tag annotation: {annotation!r}")


@dataclass(frozen=True)
class SlotConfiguration:
    name: str
    required: bool = False
    default: Optional[str] = None

    @classmethod
    def from_json(cls, obj):
        # Slots can be declared by name only
        if isinstance(obj, str):
            return cls(name=obj)
        return cls(name=obj["name"], required=obj.get("required", False), default=obj.get("default"))

    def to_json(self):
        obj = {"name": self.name, "required": self.required}
        if self.default is not None:
            obj["default"] = self.default
        return obj


@dataclass(frozen=True)
class IntentConfiguration:
    name: str
    slots: tuple = ()

    def __post_init__(self):
        # kept hashable and concatenable whatever sequence is given
        object.__setattr__(self, "slots", tuple(self.slots))

    @classmethod
    def from_json(cls, obj):
        return cls(name=obj["name"], slots=tuple(SlotConfiguration.from_json(s) for s in obj.get("slots", [])))

    def to_json(self):
        return {"name": self.name, "slots": [s.to_json() for s in self.slots]}

    @property
    def slot_names(self) -> List[str]:
        return [s.name for s in self.slots]

    def get_slot_index(self, slot_name: str) -> int:
        return self.slot_names.index(slot_name)

    def with_no_slot(self):
        """Return this configuration with the reserved no-slot appended (if missing)."""
        if NO_SLOT_NAME in self.slot_names:
            return self
        return IntentConfiguration(name=self.name, slots=self.slots + (SlotConfiguration(NO_SLOT_NAME),))


def check_configuration(configuration) -> Dict[str, set]:
    """
    Verify that intent names are unique, and slot names are unique within each intent.

    Returns:
        dict: the set of slot names of each intent, by intent name
    """
    slot_names_by_intent = {}
    for intent in configuration:
        names = intent.slot_names
        if len(set(names)) != len(names):
            raise InvalidIntentConfiguration(f"Intent '{intent.name}': slot names must be unique.")
        slot_names_by_intent[intent.name] = set(names)

    if len(slot_names_by_intent) != len(configuration):
        raise InvalidConfiguration("Intent names must be unique.")

    return slot_names_by_intent


@dataclass(frozen=True)
class SlotAnnotation:
    name: str
    iob: IOBTag

    @classmethod
    def no_slot(cls):
        return cls(name=NO_SLOT_NAME, iob=IOBTag.BEGINNING)


@dataclass
class Token:
    form: str
    slot: SlotAnnotation = field(default_factory=SlotAnnotation.no_slot)


@dataclass
class Example:
    intent: str
    tokens: List[Token]

    @property
    def forms(self):
        return [t.form for t in self.tokens]


class Dataset:
    """ intents configuration + labeled examples, validated on construction """

    def __init__(self, configuration, examples):
        self.configuration = list(configuration)
        self.examples = list(examples)
        self._validate()

    @classmethod
    def from_dict(cls, obj):
        configuration = [IntentConfiguration.from_json(i) for i in obj["intents"]]
        examples = []
        for i, ex in enumerate(obj["examples"], start=1):
            tokens = []
            for tok in ex.get("tokens", []):
                slot = tok.get("slot")
                if slot is None:
                    tokens.append(Token(form=tok["form"]))
                    continue
                try:
                    iob = IOBTag.from_annotation(slot["iob"])
                except ValueError as e:
                    raise InvalidExample(i, str(e)) from e
                tokens.append(Token(form=tok["form"], slot=SlotAnnotation(name=slot["name"], iob=iob)))
            examples.append(Example(intent=ex["intent"], tokens=tokens))
        return cls(configuration, examples)

    @classmethod
    def from_file(cls, path):
        return cls.from_dict(load_data(path))

    def _validate(self):
        slot_names_by_intent = check_configuration(self.configuration)

        for i, example in enumerate(self.examples, start=1):
            if example.intent not in slot_names_by_intent:
                raise InvalidExample(i, f"Invalid intent name: '{example.intent}'")
            if not example.tokens:
                raise InvalidExample(i, "An example must contain at least one token")
            for tok in example.tokens:
                if tok.slot.name != NO_SLOT_NAME and tok.slot.name not in slot_names_by_intent[example.intent]:
                    raise InvalidExample(
                        i, f"Invalid slot name for intent '{example.intent}': '{tok.slot.name}'")

    def split(self, dev_size=0.10, seed=42):
        train_raw, dev_raw = create_raws(self.examples, dev_size=dev_size, seed=seed)
        return Dataset(self.configuration, train_raw), Dataset(self.configuration, dev_raw)

    def __len__(self):
        return len(self.examples)


def load_data(path):
    with open(path, "r") as f:
        return json.load(f)


def create_raws(examples, dev_size=0.10, seed=42):
    # Count how often each intent occurs
    intents = [ex.intent for ex in examples]
    count_y = Counter(intents)
    inputs = []      # examples with intent freq > 1
    labels = []      # their intents (for stratification)
    mini_train = []  # singleton-intent examples

    for ex, intent in zip(examples, intents):
        if count_y[intent] > 1:
            inputs.append(ex)
            labels.append(intent)
        else:
            mini_train.append(ex)

    # Stratified split on the frequent-intent examples
    X_train, X_dev, _, _ = train_test_split(
        inputs,
        labels,
        test_size=dev_size,
        stratify=labels,
        random_state=seed,
        shuffle=True
    )

    # Put all singletons back into the training set
    X_train.extend(mini_train)
    return X_train, X_dev


class EmbeddingsEncoder(nn.Module):
    """
    Frozen word-embeddings lookup producing one fixed-size vector per token.

    The vectors are random (seeded) and never trained: the frame extractor treats
    them as opaque token encodings.
    """

    def __init__(self, word2id: Dict[str, int], emb_size: int, seed: int = 42):
        super().__init__()
        self.word2id = dict(word2id)
        self.emb_size = emb_size
        generator = torch.Generator().manual_seed(seed)
        self.embedding = nn.Embedding(len(self.word2id), emb_size, padding_idx=PAD_TOKEN)
        with torch.no_grad():
            self.embedding.weight.copy_(torch.randn(len(self.word2id), emb_size, generator=generator))
            self.embedding.weight[PAD_TOKEN].zero_()
        self.embedding.weight.requires_grad_(False)

    @classmethod
    def from_dataset(cls, dataset, emb_size, cutoff=0, seed=42):
        words = [form for ex in dataset.examples for form in ex.forms]
        return cls(build_vocabulary(words, cutoff=cutoff), emb_size, seed=seed)

    @property
    def token_encoding_size(self):
        return self.emb_size

    def encode(self, forms) -> torch.Tensor:
        unk = self.word2id["unk"]
        ids = torch.tensor([self.word2id.get(f, unk) for f in forms], dtype=torch.long,
                           device=self.embedding.weight.device)
        return self.embedding(ids)

    def to_state(self):
        return {"word2id": self.word2id, "emb_size": self.emb_size, "state_dict": self.state_dict()}

    @classmethod
    def from_state(cls, state):
        encoder = cls(state["word2id"], state["emb_size"])
        encoder.load_state_dict(state["state_dict"])
        return encoder


def build_vocabulary(words, cutoff=0):
    vocab = {"pad": PAD_TOKEN, "unk": 1}
    for w, c in Counter(words).items():
        if c > cutoff:
            vocab[w] = len(vocab)
    return vocab


@dataclass
class EncodedToken:
    encoding: torch.Tensor
    slot: SlotAnnotation


@dataclass
class EncodedExample:
    intent: str
    tokens: List[EncodedToken]

    @property
    def encodings(self) -> torch.Tensor:
        return torch.stack([t.encoding for t in self.tokens])


class EncodedDataset:
    """ dataset whose token forms have been replaced by their encodings """

    def __init__(self, configuration, examples):
        self.configuration = list(configuration)
        self.examples = list(examples)

    @classmethod
    def from_dataset(cls, dataset, tokens_encoder, verbose=True):
        examples = []
        with torch.no_grad():
            for ex in tqdm(dataset.examples, desc="Encoding", disable=not verbose):
                encodings = tokens_encoder.encode(ex.forms)
                examples.append(EncodedExample(
                    intent=ex.intent,
                    tokens=[EncodedToken(encoding=e, slot=t.slot) for e, t in zip(encodings, ex.tokens)]))
        return cls([c.with_no_slot() for c in dataset.configuration], examples)

    def __len__(self):
        return len(self.examples)
