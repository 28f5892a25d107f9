# pollingapp

A small polling service served as a WSGI application. Users register with a
username and an e-mail address, create polls with between 2 and 20 options,
and vote once per poll. Vote counts are computed from the stored votes every
time a poll is read, and every response body is JSON (apart from the plain-text
answers of the middleware and of unknown routes, described below).

Data lives in a SQLite database managed by `pollingapp.store.Store`, which
creates its tables when it is opened.

## HTTP interface

| Method       | Path               | Purpose                                  | Success |
|--------------|--------------------|------------------------------------------|---------|
| `GET`/`HEAD` | `/health`          | Check that the database answers          | 200     |
| `GET`/`HEAD` | `/polls`           | List every poll with options and counts  | 200     |
| `GET`/`HEAD` | `/polls/{id}`      | Fetch one poll                           | 200     |
| `POST`       | `/polls`           | Create a poll                            | 201     |
| `DELETE`     | `/polls/{id}`      | Delete a poll, its options and its votes | 204     |
| `POST`       | `/polls/{id}/vote` | Cast a vote                              | 200     |
| `POST`       | `/users`           | Register a user                          | 201     |

Any other path, or a known path with a method not listed for it, answers 404
with the plain text `404 page not found`. A `{id}` that is not a decimal
integer gives 400 with `invalid poll id`.

### Request bodies

Register a user:

```json
{"username": "alice", "email": "alice@example.com"}
```

Usernames are 3 to 32 bytes long after trimming, start with a letter, and
contain only letters, digits, underscores and hyphens. The username is stored
trimmed; the e-mail address is lower-cased and trimmed. A duplicate username
or e-mail address gives 409.

Create a poll:

```json
{"owner_id": 1, "title": "Favorite Color?", "options": ["Red", "Blue", "Green"]}
```

The title must not be blank and is at most 256 bytes once trimmed; it is
stored as sent. Option texts are trimmed, must not be empty and are at most
256 bytes. The owner must exist.

Vote:

```json
{"option_id": 2, "user_id": 1}
```

The poll must exist (404 otherwise), the option must belong to it and the user
must exist (400 otherwise). A second vote by the same user on the same poll
gives 409.

A body that is not a JSON object, has fields of the wrong type, or is larger
than 1 MiB gives 400 with `invalid request body`. Field names are matched
case-insensitively.

### Responses

A poll looks like this:

```json
{
  "id": 1,
  "title": "Favorite Color?",
  "created_at": "2024-01-01T12:00:00.123456Z",
  "options": [
    {"id": 1, "text": "Red", "vote_count": 0},
    {"id": 2, "text": "Blue", "vote_count": 1}
  ]
}
```

A registered user is returned as `id`, `username`, `email` and `created_at`.

Errors share one shape, with a machine-readable code:

```json
{"error": "poll not found", "code": "NOT_FOUND"}
```

The codes used are `VALIDATION_ERROR` (400), `NOT_FOUND` (404), `CONFLICT`
(409) and `INTERNAL_ERROR` (500, or 503 from `/health`). They are the members
of `pollingapp.responses.ErrorCode`.

## Serving the application

`pollingapp.app.create_app(store, logger, timeout_seconds)` builds the WSGI
callable (a `PollingApp`). The logger defaults to `new_logger()` and the
timeout to 30 seconds. The package does not include a command-line program or
an HTTP server of its own; run it under any WSGI server. This example uses the
one in the standard library:

```python
import logging
import sys
from wsgiref.simple_server import make_server

from pollingapp.app import create_app
from pollingapp.logctx import new_logger
from pollingapp.store import Store

logger = new_logger(logging.INFO, sys.stdout)

with Store("polls.db") as store:
    app = create_app(store, logger, 30)
    with make_server("127.0.0.1", 8080, app) as httpd:
        httpd.serve_forever()
```

Every request passes through `pollingapp.middleware.default_middleware`, from
the outside in:

1. `panic_recovery`: an exception escaping the handler is logged and answered
   with 500 and the text `Internal Server Error`;
2. `request_id`: a fresh UUID is bound to the log context as `request_id`
   (see `current_request_id()`);
3. `request_logging`: method and path are bound to the log context, and the
   start and completion (status, size, duration in nanoseconds) are logged;
4. `timeout`: the handler runs in a worker thread; if it takes longer than
   the limit the request is answered with 503 and the text
   `request took too long`.

Responses are buffered in full by the middleware before they are sent.

## Logging

`pollingapp.logctx.new_logger(level, stream)` returns a logger that writes one
JSON object per line (`time`, `level`, `msg`, then any attributes). Fields
bound with `bound_context(...)` are added to every record logged while the
block is active; extra fields can be passed as `extra={"attrs": {...}}`:

```python
import logging
import sys

from pollingapp.logctx import bound_context, new_logger

logger = new_logger(logging.INFO, sys.stdout)
with bound_context(request_id="example-request"):
    logger.info("started request", extra={"attrs": {"poll_id": 1}})
```

## Working with the store directly

```python
from pollingapp.predicates import eq
from pollingapp.store import Store
from pollingapp.userqueries import PollQuery

with Store(":memory:") as store:
    owner = store.create_user("owner", "owner@example.com")
    poll = store.create_poll(owner.id, "Test Poll")
    option = store.create_option(poll.id, "Option 1")
    store.create_vote(poll.id, option.id, owner.id, None)

    loaded = PollQuery(store).with_options(True).where(eq("id", poll.id)).only()
    print(len(loaded.options[0].votes))  # 1
```

`Store.transaction()` runs a block atomically; nested blocks become
savepoints. Constraint violations raise `pollingapp.entities.ConstraintError`.

Queries (`VoteQuery` in `pollingapp.queries`; `UserQuery`, `PollQuery` and
`PollOptionQuery` in `pollingapp.userqueries`) are built by chaining `where`,
`order` (a leading `-` sorts descending), `limit`, `offset` and `unique`, plus
the eager-loading methods such as `with_options` or `with_user`. They are run
with `all`, `first`, `first_id`, `only`, `only_id`, `ids`, `count`, `exist`,
`select` (chosen columns as dicts) or `group_by` (a count per group). `first`
and `only` raise `NotFoundError` when nothing matches, and `only` raises
`NotSingularError` when more than one row does.

Predicates come from `pollingapp.predicates` (`eq`, `ne`, `gt`, `ge`, `lt`,
`le`, `in_`, `not_in`, `and_`, `or_`, `not_`) and combine with `&`, `|` and
`~`. Update builders for users and votes are in `pollingapp.updates`.

## What it does not do

There is no authentication, no way to edit a poll or its options over HTTP,
and no schema migration beyond the tables the store creates on first use.

## Tests

The test suite uses pytest; install the `test` extra to get it.