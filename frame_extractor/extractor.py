from dataclasses import dataclass

import torch

from .decoding import build_frame
from .model import FrameExtractorModel


@dataclass
class Output:
    """
    Scores of a sentence, or errors of those scores when given to the backward.

    Attributes:
        intents_distribution (Tensor): shape (n_intents,)
        slots_classifications (Tensor): shape (seq_len, slots_output_size)
    """
    intents_distribution: torch.Tensor
    slots_classifications: torch.Tensor


class FrameExtractor:
    """
    Neural processor of a FrameExtractorModel.

    forward -> backward -> get_params_errors follow each other for one sentence at a time.
    The heads are fed with detached copies of the encoder outputs, so that their input
    errors can be routed to the encoders by hand: the intent errors only reach the two
    boundary time-steps, the slots errors reach every token.
    """

    def __init__(self, model: FrameExtractorModel, propagate_to_input: bool = False):
        self.model = model
        self.propagate_to_input = propagate_to_input
        self._state = None
        self._input_errors = None

    def forward(self, encodings: torch.Tensor) -> Output:
        if encodings.size(0) == 0:
            raise ValueError("Cannot extract frames from an empty sentence")

        track = torch.is_grad_enabled()
        if track and self.propagate_to_input:
            encodings = encodings.detach().requires_grad_()

        h1 = self.model.birnn1(encodings)
        h2 = self.model.birnn2(encodings)

        intent_input = self.model.intent_input(h1, h2)
        slots_input = self.model.concat_slots_input(h1, h2)  # [h2, h1]

        if track:
            intent_input = intent_input.detach().requires_grad_()
            slots_input = slots_input.detach().requires_grad_()

        intent_logits = self.model.intent_network(intent_input)
        slots_logits = self.model.slots_network(slots_input)

        self._state = {
            "encodings": encodings, "h1": h1, "h2": h2,
            "intent_input": intent_input, "slots_input": slots_input,
            "intent_logits": intent_logits, "slots_logits": slots_logits,
        } if track else None

        return Output(
            intents_distribution=torch.softmax(intent_logits, dim=-1).detach(),
            slots_classifications=torch.softmax(slots_logits, dim=-1).detach())

    def backward(self, output_errors: Output):
        """
        Backward the errors of the distributions (already w.r.t. the pre-softmax scores)
        through both heads and both encoders, accumulating the parameters gradients.
        """
        if self._state is None:
            raise RuntimeError("backward() requires a preceding forward() with gradients enabled")
        s = self._state

        torch.autograd.backward(
            [s["intent_logits"], s["slots_logits"]],
            [output_errors.intents_distribution, output_errors.slots_classifications])

        h1_intent_errors, h2_intent_errors = s["intent_input"].grad.split(
            [self.model.birnn1.output_size, self.model.birnn2.output_size])
        h1_errors, h2_errors = (e.clone() for e in self.model.split_slots_input(s["slots_input"].grad))

        add_last_output_errors(h1_errors, h1_intent_errors)
        add_last_output_errors(h2_errors, h2_intent_errors)

        torch.autograd.backward([s["h1"], s["h2"]], [h1_errors, h2_errors])
        self._state = None
        self._input_errors = s["encodings"].grad if self.propagate_to_input else None

    def get_input_errors(self):
        if not self.propagate_to_input:
            raise RuntimeError("Input errors are available only with propagate_to_input=True")
        return self._input_errors

    def get_params_errors(self):
        return {name: p.grad for name, p in self.model.named_parameters() if p.grad is not None}

    def extract(self, encodings):
        """Inference: the frame of an encoded sentence."""
        self.model.eval()
        with torch.no_grad():
            output = self.forward(encodings)
        return build_frame(output.intents_distribution, output.slots_classifications, self.model)


def add_last_output_errors(sequence_errors, last_output_errors):
    """
    Sum in-place the errors of an encoder last output into its per-token errors.

    The last output is [last forward state, first backward state]: the forward half is
    aligned to the start of the last token errors, the backward half to the end of the
    first token errors. With a single token both land on the same row and are summed.
    """
    l2r, r2l = last_output_errors.chunk(2)
    sequence_errors[-1, :l2r.numel()] += l2r
    sequence_errors[0, sequence_errors.size(1) - r2l.numel():] += r2l
