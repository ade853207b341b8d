from timoci.options import options


def test_no_credentials():
    opts = options("", False)
    assert (opts.username, opts.password, opts.registry_token, opts.insecure) == (None, None, None, False)


def test_user_and_password():
    opts = options("user:password", True)
    assert opts.username == "user"
    assert opts.password == "password"
    assert opts.registry_token is None
    assert opts.insecure is True


def test_password_keeps_colons():
    opts = options("user:pass:word")
    assert opts.password == "pass:word"


def test_token():
    opts = options("token")
    assert opts.registry_token == "token"
    assert opts.username is None