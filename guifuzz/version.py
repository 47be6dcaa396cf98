PACKAGE = "guifuzz"
VERSION = "0.3.0"
WEBSITE = "https://github.com/guifuzz/guifuzz"
LICENSE = "GNU GPL v2"
