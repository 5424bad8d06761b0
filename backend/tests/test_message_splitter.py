from __future__ import annotations

import pytest

from persona_chat.services.message_splitter import split_message

SAMPLES = [
    "你好！今天过得怎么样？我刚下班，有点累。不过看到你的消息就开心了。晚上想吃什么？要不要一起去吃火锅？",
    "嗯",
    "这是一段没有任何标点的很长很长的文字它会一直写下去直到超过三十个字符的限制为止还没有结束",
    "First sentence. Second one! Third? Fourth, with a comma, and more, words.",
    "  前面有空格。后面也有。  ",
    "好的，我知道了，明天见，记得带伞，晚安。",
    "。。。！！！",
]


@pytest.mark.parametrize("text", SAMPLES)
def test_split_is_lossless_and_bounded(text: str) -> None:
    bubbles = split_message(text, 6, 10)

    assert "".join(bubbles) == text
    assert 1 <= len(bubbles) <= 10
    assert all(bubbles)


def test_short_sentences_are_packed_together() -> None:
    bubbles = split_message("好的。没问题。明天见！", 6, 10)

    assert bubbles == ["好的。没问题。明天见！"]


def test_long_sentences_are_kept_apart() -> None:
    first = "今天我去了一趟很远很远的图书馆，借了好几本关于历史的书。"
    second = "回来的路上还下起了大雨，我的鞋子全都湿透了，真是倒霉的一天。"

    assert split_message(first + second, 1, 10) == [first, second]


def test_max_count_merges_smallest_neighbours() -> None:
    text = "".join(f"这是第{index}句比较长的话，用来撑满一条消息的长度而已。" for index in range(8))

    bubbles = split_message(text, 1, 4)

    assert len(bubbles) == 4
    assert "".join(bubbles) == text


def test_blank_and_empty_input() -> None:
    assert split_message("") == []
    assert split_message("   ") == ["   "]
