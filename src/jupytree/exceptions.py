class TransportError(Exception):
    def __init__(self, status_code: int | None, method: str, url: str, details: str):
        super().__init__(status_code, method, url, details)
        self.status_code = status_code
        self.method = method
        self.url = url
        self.details = details

    def __str__(self) -> str:
        status = "connection failure" if self.status_code is None else self.status_code
        return f"{self.method} {self.url} failed ({status}): {self.details}"


class ShapeMismatchError(Exception):
    def __init__(self, expected: str, details: str):
        super().__init__(expected, details)
        self.expected = expected
        self.details = details

    def __str__(self) -> str:
        return f"Response does not match {self.expected}: {self.details}"
