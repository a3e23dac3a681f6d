from itertools import accumulate

import torch
import torch.nn as nn

from .utils import NO_SLOT_NAME, check_configuration

# Encoders whose per-token outputs compose the slots input, in concatenation order.
# The slots network reads [h2, h1]: forward and backward passes both go through this constant.
SLOTS_INPUT_ORDER = ("birnn2", "birnn1")


class BiRNN(nn.Module):
    """
    Bidirectional recurrent encoder of a single sentence.

    Each token output is the concatenation [forward state, backward state].

    Args:
        input_size (int): size of the token encodings
        hidden_size (int): size of the hidden state of each direction
        rnn_type (str): recurrent connection, one of "LSTM", "GRU", "RNN"
    """
    def __init__(self, input_size: int, hidden_size: int, rnn_type: str = "LSTM"):
        super().__init__()
        self.hidden_size = hidden_size
        self.rnn = getattr(nn, rnn_type)(input_size, hidden_size, bidirectional=True, batch_first=True)

    @property
    def output_size(self):
        return 2 * self.hidden_size

    def forward(self, encodings):
        """
        Args:
            encodings (Tensor): shape (seq_len, input_size)
        Returns:
            Tensor: shape (seq_len, 2 * hidden_size)
        """
        out, _ = self.rnn(encodings.unsqueeze(0))
        return out.squeeze(0)

    def last_output(self, outputs):
        # Last forward state (last token) + last backward state (first token)
        return torch.cat([outputs[-1, :self.hidden_size], outputs[0, self.hidden_size:]])


class IntentNetwork(nn.Module):
    """ feed-forward classifier of the intent, softmax is applied by the caller """
    def __init__(self, input_size, n_intents):
        super().__init__()
        self.output = nn.Linear(input_size, n_intents)

    def forward(self, intent_input):
        return self.output(intent_input)


class SlotsNetwork(nn.Module):
    """
    Autoregressive feed-forward classifier of the slots.

    The input of each token is its slots input concatenated with the one-hot vector of
    the class predicted for the previous token (zeros for the first token).
    """
    def __init__(self, input_size, output_size):
        super().__init__()
        self.output_size = output_size
        self.output = nn.Linear(output_size + input_size, output_size)

    def forward(self, slots_inputs):
        """
        Args:
            slots_inputs (Tensor): shape (seq_len, input_size)
        Returns:
            Tensor: logits of shape (seq_len, output_size)
        """
        logits = []
        prev_class = None
        for slots_input in slots_inputs:
            logits.append(self.step(slots_input, prev_class))
            # Greedy self-conditioning on the raw arg-max, never on gold labels
            prev_class = int(logits[-1].argmax())
        return torch.stack(logits)

    def step(self, slots_input, prev_class):
        prev_binary = slots_input.new_zeros(self.output_size)
        if prev_class is not None:
            prev_binary[prev_class] = 1.0
        return self.output(torch.cat([prev_binary, slots_input]))


class FrameExtractorModel(nn.Module):
    """
    Parameters of the frame extractor, together with the indices derived from the intents
    configuration.

    Every intent gets the reserved no-slot appended to its slots, so that each intent range
    contains exactly one no-slot index.
    """
    def __init__(self, name, intents_configuration, token_encoding_size, hidden_size, rnn_type="LSTM"):
        super().__init__()
        self.name = name
        self.intents_configuration = [c.with_no_slot() for c in intents_configuration]
        check_configuration(self.intents_configuration)
        self.token_encoding_size = token_encoding_size
        self.hidden_size = hidden_size
        self.rnn_type = rnn_type

        slots_counts = [len(c.slots) for c in self.intents_configuration]
        self.slots_offsets = [0] + list(accumulate(slots_counts))[:-1]

        all_slots = [name for c in self.intents_configuration for name in c.slot_names]
        self.no_slot_indices = tuple(i for i, s in enumerate(all_slots) if s == NO_SLOT_NAME)

        # Beginning + Inside for each slot of each intent
        self.slots_output_size = 2 * len(all_slots)

        self.birnn1 = BiRNN(token_encoding_size, hidden_size, rnn_type)
        self.birnn2 = BiRNN(token_encoding_size, hidden_size, rnn_type)

        # Always the concatenation of the last outputs
        self.intent_network = IntentNetwork(
            self.birnn1.output_size + self.birnn2.output_size, len(self.intents_configuration))
        self.slots_network = SlotsNetwork(
            self.birnn1.output_size + self.birnn2.output_size, self.slots_output_size)

    def get_intent_index(self, intent_name):
        for i, c in enumerate(self.intents_configuration):
            if c.name == intent_name:
                return i
        raise KeyError(intent_name)

    def slots_range(self, intent_index) -> range:
        """Global slot indices legal for the given intent."""
        offset = self.slots_offsets[intent_index]
        return range(offset, offset + len(self.intents_configuration[intent_index].slots))

    def concat_slots_input(self, h1, h2):
        outputs = {"birnn1": h1, "birnn2": h2}
        return torch.cat([outputs[name] for name in SLOTS_INPUT_ORDER], dim=1)

    def split_slots_input(self, slots_input):
        """Inverse of concat_slots_input: returns (h1 part, h2 part)."""
        parts = dict(zip(SLOTS_INPUT_ORDER, slots_input.split(
            [getattr(self, name).output_size for name in SLOTS_INPUT_ORDER], dim=1)))
        return parts["birnn1"], parts["birnn2"]

    def intent_input(self, h1, h2):
        return torch.cat([self.birnn1.last_output(h1), self.birnn2.last_output(h2)])

    def hyperparameters(self):
        return {
            "name": self.name,
            "intents_configuration": [c.to_json() for c in self.intents_configuration],
            "token_encoding_size": self.token_encoding_size,
            "hidden_size": self.hidden_size,
            "rnn_type": self.rnn_type,
        }
