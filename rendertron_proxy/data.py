"""Default crawler signatures and static file extensions.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

# Bots/crawlers that do not perform well with pages that require JavaScript.
BOT_USER_AGENTS = (
    "Baiduspider",
    "bingbot",
    "Embedly",
    "facebookexternalhit",
    "LinkedInBot",
    "outbrain",
    "pinterest",
    "quora link preview",
    "rogerbot",
    "showyoubot",
    "Slackbot",
    "TelegramBot",
    "Twitterbot",
    "vkShare",
    "W3C_Validator",
    "WhatsApp",
)

# Static assets that are never worth rendering.
STATIC_FILE_EXTENSIONS = (
    "ai",
    "avi",
    "css",
    "dat",
    "dmg",
    "doc",
    "exe",
    "flv",
    "gif",
    "ico",
    "iso",
    "jpeg",
    "jpg",
    "js",
    "less",
    "m4a",
    "m4v",
    "mov",
    "mp3",
    "mp4",
    "mpeg",
    "mpg",
    "pdf",
    "png",
    "ppt",
    "psd",
    "rar",
    "rss",
    "svg",
    "swf",
    "tif",
    "torrent",
    "ttf",
    "txt",
    "wav",
    "wmv",
    "woff",
    "xls",
    "xml",
    "zip",
)
