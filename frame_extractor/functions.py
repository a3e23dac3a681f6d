import os
import random

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F
import torch.optim as optim
from tqdm import tqdm

from .decoding import decode_slots, predicted_slot_name
from .extractor import FrameExtractor, Output
from .model import FrameExtractorModel
from .statistics import MetricCounter, Statistics
from .utils import DEVICE, EmbeddingsEncoder, IntentConfiguration, IOBTag


# Set seeds for reproducibility across numpy, random, and torch (CPU and GPU)
def set_seed(seed: int):
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)


def init_weights(model: nn.Module):
    """
    Xavier/orthogonal initialization for the recurrent layers, uniform for the linear ones.
    """
    for module in model.modules():
        if isinstance(module, (nn.LSTM, nn.GRU, nn.RNN)):
            for name, param in module.named_parameters():
                if 'weight_ih' in name:
                    nn.init.xavier_uniform_(param.data)
                elif 'weight_hh' in name:
                    nn.init.orthogonal_(param.data)
                elif 'bias' in name:
                    param.data.zero_()
        elif isinstance(module, nn.Linear):
            nn.init.uniform_(module.weight, -0.01, 0.01)
            if module.bias is not None:
                module.bias.data.fill_(0.01)


# Constructs a FrameExtractorModel from the experiment configuration
def build_model(intents_configuration, token_encoding_size, cfg):
    model = FrameExtractorModel(
        name=cfg.get("model_name", "frame-extractor"),
        intents_configuration=intents_configuration,
        token_encoding_size=token_encoding_size,
        hidden_size=cfg["hid_size"],
        rnn_type=cfg.get("rnn_type", "LSTM"),
    ).to(DEVICE)
    init_weights(model)
    return model


def build_optimizer(model, cfg):
    OptimizerCls = getattr(optim, cfg.get("optimizer", "Adam"))
    return OptimizerCls(model.parameters(), lr=cfg.get("lr", 1e-3), weight_decay=cfg.get("weight_decay", 0.0))


class Shuffler:
    """ seed-based shuffler: a new permutation at each call, the same sequence at each run """
    def __init__(self, seed=743):
        self.rng = np.random.default_rng(seed)

    def permutation(self, n):
        return self.rng.permutation(n).tolist()


def gold_slot_classes(model, example):
    """Classification index of the gold slot of each token: 2 * global slot index (+1 if Inside)."""
    intent_index = model.get_intent_index(example.intent)
    intent_config = model.intents_configuration[intent_index]
    offset = model.slots_offsets[intent_index]
    return [
        2 * (offset + intent_config.get_slot_index(t.slot.name)) + (0 if t.slot.iob == IOBTag.BEGINNING else 1)
        for t in example.tokens
    ]


def compute_output_errors(output: Output, intent_index, slot_classes) -> Output:
    """Distribution minus one-hot gold, for the intent and for each token."""
    intents = output.intents_distribution
    slots = output.slots_classifications
    gold_intent = F.one_hot(torch.tensor(intent_index, device=intents.device), intents.numel()).to(intents.dtype)
    gold_slots = F.one_hot(torch.tensor(slot_classes, device=slots.device), slots.size(1)).to(slots.dtype)
    return Output(intents_distribution=intents - gold_intent, slots_classifications=slots - gold_slots)


# Performs one pass over the training set with an update after each example
def train_loop(dataset, extractor, optimizer, indices=None, clip=None, verbose=True):
    model = extractor.model
    model.train()
    losses = []
    device = next(model.parameters()).device
    indices = range(len(dataset.examples)) if indices is None else indices

    for i in tqdm(indices, desc="Training", disable=not verbose):
        example = dataset.examples[i]
        intent_index = model.get_intent_index(example.intent)
        slot_classes = gold_slot_classes(model, example)

        optimizer.zero_grad()
        output = extractor.forward(example.encodings.to(device))
        errors = compute_output_errors(output, intent_index, slot_classes)
        extractor.backward(errors)
        if clip is not None:
            torch.nn.utils.clip_grad_norm_(model.parameters(), clip)
        optimizer.step()

        gold_scores = output.slots_classifications[list(range(len(slot_classes))), slot_classes]
        losses.append(
            -torch.log(output.intents_distribution[intent_index].clamp_min(1e-12)).item()
            - torch.log(gold_scores.clamp_min(1e-12)).sum().item())

    return losses


class Validator:
    """
    Evaluates a model on a held-out encoded dataset.

    An intent is counted as true positive when the best intent matches the gold one and
    as false positive otherwise (under the gold intent). The slots are checked only for
    the examples whose intent is correct.

    Slot decisions come from the constrained decoder, which never leaves the range of the
    predicted intent, so every decided token is a true or a false positive. A false
    negative is counted only for a decision outside that range, hence with the decoder in
    place the slots recall is 1.0 whenever any slot is a true positive.
    """

    def __init__(self, model, dataset, verbose=True):
        self.model = model
        self.dataset = dataset
        self.verbose = verbose

    def evaluate(self) -> Statistics:
        extractor = FrameExtractor(self.model)
        intents = {c.name: MetricCounter() for c in self.model.intents_configuration}
        slots = MetricCounter()
        device = next(self.model.parameters()).device

        self.model.eval()
        with torch.no_grad():
            for example in tqdm(self.dataset.examples, desc="Validation", disable=not self.verbose):
                output = extractor.forward(example.encodings.to(device))
                best_intent = int(output.intents_distribution.argmax())
                intent_config = self.model.intents_configuration[best_intent]

                if intent_config.name == example.intent:
                    intents[example.intent].true_pos += 1
                    self._validate_slots(example, best_intent, output.slots_classifications, slots)
                else:
                    intents[example.intent].false_pos += 1

        return Statistics(intents=intents, slots=slots)

    def _validate_slots(self, example, intent_index, slots_classifications, counter):
        intent_config = self.model.intents_configuration[intent_index]
        slots_range = self.model.slots_range(intent_index)
        decisions = decode_slots(slots_classifications, slots_range, self.model.no_slot_indices)

        for decision, token in zip(decisions, example.tokens):
            predicted = predicted_slot_name(decision, intent_config, slots_range)
            if predicted is None:
                counter.false_neg += 1
            elif predicted == token.slot.name:
                counter.true_pos += 1
            else:
                counter.false_pos += 1


class Trainer:
    """
    Online training of a frame extractor, validated after each epoch.

    The model is saved each time the validation accuracy is strictly better than the best
    one seen so far.

    Args:
        model (FrameExtractorModel): the model to train
        model_filename (str): where to save the best model
        epochs (int): number of epochs, must be > 0
        validator (Validator): evaluates the model after each epoch
        optimizer (Optimizer): defaults to Adam(lr=1e-3)
        clip (float): max norm for gradient clipping, None to disable
        patience (int): epochs without improvement before stopping, None to disable
        tokens_encoder: saved together with the model, if given
    """

    def __init__(self, model, model_filename, epochs, validator, optimizer=None,
                 clip=None, patience=None, tokens_encoder=None, verbose=True):
        if epochs <= 0:
            raise ValueError("The number of epochs must be > 0")
        self.model = model
        self.model_filename = model_filename
        self.epochs = epochs
        self.validator = validator
        self.optimizer = optimizer if optimizer is not None else optim.Adam(model.parameters(), lr=1e-3)
        self.clip = clip
        self.patience = patience
        self.tokens_encoder = tokens_encoder
        self.verbose = verbose
        self.extractor = FrameExtractor(model)
        self.best_accuracy = -1.0  # all accuracy values are in [0.0, 1.0]

    def train(self, dataset, shuffle=True, seed=743):
        shuffler = Shuffler(seed) if shuffle else None
        history = []
        epochs_no_improve = 0

        for epoch in range(1, self.epochs + 1):
            if self.verbose:
                print(f"\nEpoch {epoch} of {self.epochs}")

            indices = shuffler.permutation(len(dataset.examples)) if shuffler else None
            losses = train_loop(dataset, self.extractor, self.optimizer,
                                indices=indices, clip=self.clip, verbose=self.verbose)

            stats = self.validator.evaluate()
            history.append(stats)
            if self.verbose:
                print(f"Train loss: {np.mean(losses) if losses else 0.0:.4f}")
                print(f"\nStatistics\n{stats}")

            if stats.accuracy > self.best_accuracy:
                self.best_accuracy = stats.accuracy
                epochs_no_improve = 0
                save_model(self.model_filename, self.model, self.tokens_encoder)
                if self.verbose:
                    print(f"\nNEW BEST ACCURACY! Model saved to \"{self.model_filename}\"")
            else:
                epochs_no_improve += 1
                if self.patience is not None and epochs_no_improve >= self.patience:
                    if self.verbose:
                        print(f"Stopping early at epoch {epoch} (no improvement in {self.patience} epochs).")
                    break

        return history


def save_model(path, model, tokens_encoder=None):
    dirname = os.path.dirname(path)
    if dirname:
        os.makedirs(dirname, exist_ok=True)
    data_to_save = {**model.hyperparameters(), "model_state": model.state_dict()}
    if tokens_encoder is not None:
        data_to_save["tokens_encoder"] = tokens_encoder.to_state()
    torch.save(data_to_save, path)


def load_model(path):
    """
    Returns:
        tuple: (FrameExtractorModel, EmbeddingsEncoder or None)
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"No saved model found at {path}")
    saved = torch.load(path, map_location=DEVICE)
    model = FrameExtractorModel(
        name=saved["name"],
        intents_configuration=[IntentConfiguration.from_json(c) for c in saved["intents_configuration"]],
        token_encoding_size=saved["token_encoding_size"],
        hidden_size=saved["hidden_size"],
        rnn_type=saved["rnn_type"],
    )
    model.load_state_dict(saved["model_state"])
    model.to(DEVICE)
    tokens_encoder = None
    if "tokens_encoder" in saved:
        tokens_encoder = EmbeddingsEncoder.from_state(saved["tokens_encoder"]).to(DEVICE)
    return model, tokens_encoder
