import argparse
import importlib

from .functions import Trainer, Validator, build_model, build_optimizer, load_model, set_seed
from .extractor import FrameExtractor
from .utils import Dataset, EmbeddingsEncoder, EncodedDataset


def print_frame(frame, forms):
    print(f"Intent: {frame.intent}")
    if frame.slots:
        print("Slots: " + ", ".join(
            f"({s.name} {' '.join(forms[t.index] for t in s.tokens)})" for s in frame.slots))
    else:
        print("Slots: None")
    print("Distribution:")
    for name, score in sorted(frame.distribution.items(), key=lambda x: x[1], reverse=True):
        print(f"\t[{100.0 * score:5.2f} %] {name}")


def load_text_model(model_path):
    model, tokens_encoder = load_model(model_path)
    if tokens_encoder is None:
        raise ValueError(f"The model saved at {model_path} has no tokens encoder")
    return model, tokens_encoder


def run_extraction(model_path):
    model, tokens_encoder = load_text_model(model_path)
    print(f"\nFrame Extractor model: {model.name}")
    extractor = FrameExtractor(model)

    while True:
        try:
            text = input("\nExtract frames from a text (empty to exit): ").strip()
        except EOFError:
            break
        if not text:
            break
        forms = text.split()
        frame = extractor.extract(tokens_encoder.encode(forms))
        print()
        print_frame(frame, forms)

    print("\nExiting...")


def main(argv=None):
    p = argparse.ArgumentParser(description="Train, evaluate or run a joint intent/slots frame extractor")
    p.add_argument("--exp", default="exp1", help="Name of config, e.g. exp2")
    p.add_argument("--train", help="Path of the training dataset (JSON)")
    p.add_argument("--validation", help="Path of the validation dataset (JSON)")
    p.add_argument("--model-path", default=None, help="Path of the model checkpoint")
    p.add_argument("--test", action="store_true", help="Evaluate a saved model on the validation set")
    p.add_argument("--extract", action="store_true", help="Extract frames from sentences read from stdin")
    p.add_argument("--quiet", action="store_true")
    args = p.parse_args(argv)

    cfg = importlib.import_module(f"frame_extractor.configs.{args.exp}").CFG
    model_path = args.model_path or f"bin/{args.exp}_best_model.pt"
    verbose = not args.quiet

    if args.extract:
        run_extraction(model_path)
        return

    if args.test:
        if not args.validation:
            p.error("--test requires --validation")
        model, tokens_encoder = load_text_model(model_path)
        print(f"Loading validation dataset from '{args.validation}'...")
        dataset = EncodedDataset.from_dataset(Dataset.from_file(args.validation), tokens_encoder, verbose=verbose)
        print(f"\nStart validation on {len(dataset)} examples")
        stats = Validator(model, dataset, verbose=verbose).evaluate()
        print(f"\nStatistics\n{stats}")
        return

    if not args.train:
        p.error("--train is required for training")

    set_seed(cfg.get("seed", 42))

    print(f"Loading training dataset from '{args.train}'...")
    training = Dataset.from_file(args.train)
    if args.validation:
        print(f"Loading validation dataset from '{args.validation}'...")
        validation = Dataset.from_file(args.validation)
        if validation.configuration != training.configuration:
            raise ValueError("The training dataset and the validation dataset must have the same configuration.")
    else:
        # split off a dev set (singleton-intent examples stay in train)
        training, validation = training.split(dev_size=cfg.get("dev_size", 0.10), seed=cfg.get("seed", 42))

    tokens_encoder = EmbeddingsEncoder.from_dataset(training, cfg["emb_size"], seed=cfg.get("seed", 42))
    train_set = EncodedDataset.from_dataset(training, tokens_encoder, verbose=verbose)
    dev_set = EncodedDataset.from_dataset(validation, tokens_encoder, verbose=verbose)

    print(f"\nTraining examples: {len(train_set)}.")
    print(f"Validation examples: {len(dev_set)}.")

    model = build_model(training.configuration, tokens_encoder.token_encoding_size, cfg)
    tokens_encoder.to(next(model.parameters()).device)

    trainer = Trainer(
        model=model,
        model_filename=model_path,
        epochs=cfg["epochs"],
        validator=Validator(model, dev_set, verbose=verbose),
        optimizer=build_optimizer(model, cfg),
        clip=cfg.get("clip"),
        patience=cfg.get("patience"),
        tokens_encoder=tokens_encoder,
        verbose=verbose,
    )
    trainer.train(train_set, shuffle=cfg.get("shuffle_seed") is not None, seed=cfg.get("shuffle_seed") or 743)
    print(f"Best accuracy: {100 * trainer.best_accuracy:.2f}%")


if __name__ == "__main__":
    main()
