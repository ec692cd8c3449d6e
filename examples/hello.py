"""Example app: ``dispatchly dev examples/hello.py``."""

from datetime import datetime, timezone

from dispatchly import Dispatchly
from dispatchly.middlewares import json_body, log_errors, logger

app = Dispatchly()

app.use(logger)
app.use(json_body)
app.use_error(log_errors)


@app.get("/")
def index(request, response):
    response.text("Hello, World!")


@app.get("/time")
def now(request, response):
    response.text(datetime.now(timezone.utc).isoformat())


@app.post("/echo")
def echo(request, response):
    response.json(request.body)


@app.post("/users")
def create_user(request, response):
    response.json({"id": 1, "name": "John Doe"}, status_code=201)


@app.post("/users/:id/add/:name")
def add_user(request, response):
    return {"params": request.params, "query": request.query}


if __name__ == "__main__":
    app.listen(3000)
