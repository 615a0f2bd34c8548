import pytest

from bagraph.command_args import (
    CommandArgs,
    CommandArgsError,
    HelpRequested,
    format_float_list,
    format_int_list,
    parse_float_list,
    parse_int_list,
)


def make_args():
    args = CommandArgs()
    args.param("input", "", "file which will be processed")
    args.param("num_iterations", 10, "Number of iterations.")
    args.param("rotation_sigma", 0.0, "rotation perturbation.")
    args.param("robustify", False, "Use a robust loss function")
    return args


def test_defaults_before_parsing():
    args = make_args()
    assert args["input"] == ""
    assert args["num_iterations"] == 10
    assert args["rotation_sigma"] == 0.0
    assert args["robustify"] is False


def test_parse_values():
    args = make_args()
    args.parse_args(["prog", "-input", "data.txt", "-num_iterations", "25",
                     "-rotation_sigma", "0.5"])
    assert args["input"] == "data.txt"
    assert args["num_iterations"] == 25
    assert args["rotation_sigma"] == 0.5
    assert args.parsed_param("input")
    assert not args.parsed_param("robustify")


def test_double_dash_prefix_accepted():
    args = make_args()
    args.parse_args(["prog", "--input", "x.bal"])
    assert args["input"] == "x.bal"


def test_bool_toggles_once():
    args = make_args()
    args.parse_args(["prog", "-robustify", "-robustify"])
    assert args["robustify"] is True
    assert args.parsed_param("robustify")


def test_unknown_option():
    args = make_args()
    with pytest.raises(CommandArgsError) as info:
        args.parse_args(["prog", "-bogus"])
    assert "bogus" in str(info.value)
    assert info.value.usage is None


def test_missing_value():
    args = make_args()
    with pytest.raises(CommandArgsError) as info:
        args.parse_args(["prog", "-input"])
    assert info.value.usage is not None
    assert "Usage: prog" in info.value.usage


def test_help_requested():
    args = make_args()
    with pytest.raises(HelpRequested) as info:
        args.parse_args(["prog", "-h"])
    assert info.value.text.startswith("Usage: prog [options] ")
    assert "-help / -h           Displays this help." in info.value.text


def test_invalid_number_keeps_previous_value():
    args = make_args()
    args.parse_args(["prog", "-num_iterations", "abc"])
    assert args["num_iterations"] == 10
    assert args.parsed_param("num_iterations")


def test_number_prefix_is_read():
    args = make_args()
    args.parse_args(["prog", "-num_iterations", "12abc"])
    assert args["num_iterations"] == 12


def test_non_option_stops_parsing_and_fills_left_overs():
    args = make_args()
    args.param_left_over("graph", "", "input graph")
    args.param_left_over("output", "out.g2o", "output", optional=True)
    args.parse_args(["prog", "-num_iterations", "3", "g.g2o", "-input", "ignored"])
    assert args["graph"] == "g.g2o"
    assert args["output"] == "-input"
    assert args["input"] == ""
    assert args["num_iterations"] == 3


def test_double_dash_ends_options():
    args = make_args()
    args.param_left_over("graph", "", "input graph")
    args.parse_args(["prog", "--", "-input"])
    assert args["graph"] == "-input"
    assert args["input"] == ""


def test_missing_required_left_over():
    args = make_args()
    args.param_left_over("graph", "", "input graph")
    with pytest.raises(CommandArgsError):
        args.parse_args(["prog"])


def test_optional_left_over_keeps_default():
    args = CommandArgs()
    args.param_left_over("output", "out.g2o", "output", optional=True)
    args.parse_args(["prog"])
    assert args["output"] == "out.g2o"


def test_unknown_key_lookup():
    with pytest.raises(KeyError):
        make_args()["missing"]


def test_help_table_sorted_with_defaults():
    args = make_args()
    args.parse_args(["prog"])
    text = args.help_text()
    lines = text.splitlines()
    start = lines.index("Program Options:") + 2
    labels = [line.split()[0] for line in lines[start:]]
    assert labels == sorted(labels)
    assert "Number of iterations. (default: 10)" in text
    assert "(default: )" not in text


def test_help_usage_lists_left_overs():
    args = CommandArgs("banner line")
    args.param_left_over("graph", "", "graph")
    args.param_left_over("out", "", "out", optional=True)
    args.parse_args(["prog", "g"])
    text = args.help_text()
    assert text.startswith("banner line\n")
    assert "Usage: prog graph [out]" in text
    assert "Program Options:" not in text


def test_list_params():
    args = CommandArgs()
    args.param("ids", [1, 2], "ids")
    args.param("weights", [0.5], "weights")
    args.parse_args(["prog", "-ids", "4,5,6", "-weights", "1.5;2.5"])
    assert args["ids"] == [4, 5, 6]
    assert args["weights"] == [1.5, 2.5]


def test_parse_int_list():
    assert parse_int_list("1,2,3") == [1, 2, 3]
    assert parse_int_list("abc") == []
    with pytest.raises(ValueError):
        parse_int_list("")


def test_list_round_trips():
    ints = [3, -1, 42]
    assert parse_int_list(format_int_list(ints)) == ints
    floats = [1.5, -0.25, 3.0]
    assert parse_float_list(format_float_list(floats)) == floats
    assert format_int_list(ints) == "3,-1,42"
    assert format_float_list(floats) == "1.5;-0.25;3"


def test_unsupported_default_type():
    with pytest.raises(TypeError):
        CommandArgs().param("bad", {"a": 1}, "dict")