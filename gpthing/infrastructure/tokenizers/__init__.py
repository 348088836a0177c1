from gpthing.infrastructure.tokenizers.tiktoken_tokenizer import DEFAULT_ENCODING, TiktokenTokenizer

__all__ = ["DEFAULT_ENCODING", "TiktokenTokenizer"]
