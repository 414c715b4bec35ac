class LinkError(Exception):
    pass


class InvalidUrl(LinkError):
    def __init__(self, url):
        self.url = url
        super().__init__(f"Not a valid url: {url!r}")


class TitleFetchError(LinkError):
    def __init__(self, url, reason: str = ""):
        self.url = url
        self.reason = reason
        super().__init__(f"Error reading title of {url}: {reason}")


class ShortCodeExhausted(LinkError):
    """No free short code was found within the configured number of attempts."""
