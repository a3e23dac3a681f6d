# exp2: GRU encoders, gradient clipping and early stopping
CFG = {
    "model_name":   "frame-extractor-exp2",
    "rnn_type":     "GRU",
    "hid_size":     150,
    "emb_size":     100,
    "optimizer":    "Adam",
    "lr":           5e-4,
    "weight_decay": 0.0,
    "epochs":       50,
    "clip":         5.0,
    "patience":     5,
    "shuffle_seed": 743,
    "dev_size":     0.10,
    "seed":         42,
}
