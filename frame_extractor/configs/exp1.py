# exp1: two BiLSTM encoders, plain Adam, no clipping
CFG = {
    "model_name":   "frame-extractor-exp1",
    "rnn_type":     "LSTM",
    "hid_size":     200,
    "emb_size":     100,
    "optimizer":    "Adam",
    "lr":           1e-3,
    "weight_decay": 0.0,
    "epochs":       30,
    "clip":         None,
    "patience":     None,
    "shuffle_seed": 743,
    "dev_size":     0.10,
    "seed":         42,
}
