from dataclasses import dataclass
from typing import Dict


@dataclass
class MetricCounter:
    true_pos: int = 0
    false_pos: int = 0
    false_neg: int = 0

    @property
    def precision(self) -> float:
        den = self.true_pos + self.false_pos
        return self.true_pos / den if den > 0 else 0.0

    @property
    def recall(self) -> float:
        den = self.true_pos + self.false_neg
        return self.true_pos / den if den > 0 else 0.0

    @property
    def f1_score(self) -> float:
        p, r = self.precision, self.recall
        return 2 * p * r / (p + r) if (p + r) > 0 else 0.0

    def __add__(self, other):
        return MetricCounter(self.true_pos + other.true_pos,
                             self.false_pos + other.false_pos,
                             self.false_neg + other.false_neg)

    def __str__(self):
        return f"precision {100 * self.precision:.2f}%, recall {100 * self.recall:.2f}%, " \
               f"f1 score {100 * self.f1_score:.2f}%"


@dataclass
class Statistics:
    intents: Dict[str, MetricCounter]
    slots: MetricCounter

    @property
    def overall_intents(self) -> MetricCounter:
        return sum(self.intents.values(), MetricCounter())

    @property
    def accuracy(self) -> float:
        # Product of the micro-averaged intents F1 and the slots F1
        return self.overall_intents.f1_score * self.slots.f1_score

    def __str__(self):
        width = max((len(name) for name in self.intents), default=0) + 2
        lines = [f"- Overall accuracy: {100 * self.accuracy:.2f}%",
                 f"- Intents accuracy: {self.overall_intents}"]
        lines += [f"    {'`' + name + '`':<{width}} : {counter}" for name, counter in self.intents.items()]
        lines.append(f"- Slots accuracy: {self.slots}")
        return "\n".join(lines)
