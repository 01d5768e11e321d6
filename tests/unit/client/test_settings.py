"""Unit tests for runtime settings."""

from urllib.parse import parse_qs, urlparse

from tabscribe.config.settings import RetryPolicy, StreamingOptions


class TestStreamingOptions:
    """Tests for the connection URL."""

    def test_default_query_params(self):
        """Test defaults match the backend's expected audio format."""
        params = StreamingOptions(model="nova-3", language="en").query_params()

        assert params["model"] == "nova-3"
        assert params["language"] == "en"
        assert params["diarize"] == "true"
        assert params["interim_results"] == "true"
        assert params["punctuate"] == "true"
        assert params["smart_format"] == "true"
        assert params["encoding"] == "linear16"
        assert params["sample_rate"] == "16000"
        assert params["channels"] == "1"

    def test_url(self):
        """Test the URL carries the options in its query string."""
        options = StreamingOptions(base_url="wss://example.test/v1/listen", language="multi")

        parsed = urlparse(options.url)

        assert parsed.scheme == "wss"
        assert parsed.netloc == "example.test"
        assert parse_qs(parsed.query)["language"] == ["multi"]

    def test_empty_language_omitted(self):
        """Test an empty language is left out of the query."""
        params = StreamingOptions(language="").query_params()

        assert "language" not in params

    def test_booleans_lowercased(self):
        """Test booleans are rendered lowercase."""
        params = StreamingOptions(diarize=False).query_params()

        assert params["diarize"] == "false"


class TestRetryPolicy:
    """Tests for media retry delays."""

    def test_no_retries(self):
        """Test a single attempt has no delays."""
        assert RetryPolicy(max_attempts=1).delays() == []

    def test_exponential_backoff(self):
        """Test delays double after each failure."""
        assert RetryPolicy(max_attempts=4, backoff_s=0.5).delays() == [0.5, 1.0, 2.0]
