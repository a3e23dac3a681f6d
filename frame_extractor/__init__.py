from .decoding import Frame, Slot, SlotDecision, SlotToken, build_frame, decide_slot
from .extractor import FrameExtractor, Output
from .functions import Trainer, Validator, load_model, save_model
from .model import FrameExtractorModel
from .statistics import MetricCounter, Statistics
from .utils import NO_SLOT_NAME, Dataset, EmbeddingsEncoder, EncodedDataset, IntentConfiguration
