import streamlit as st
from icecream_engine import (
    HEADER,
    SAMPLE_ROWS,
    IceCream,
    IceCreamError,
    as_records,
    parse_rows,
    pretty,
    to_csv,
)

st.set_page_config(page_title="Ice Cream Query Rewrite", page_icon="🍨", layout="wide")

DEFAULT_ROWS = to_csv(SAMPLE_ROWS)

# (Maker LIKE '% Creamery' OR Flavor = 'Vanilla') AND Flavor IN ('Mint','Coffee','Vanilla')
DEFAULTS = {
    "rows_text": DEFAULT_ROWS,
    "intersect_flavors": "Mint, Coffee, Vanilla",
    "maker_suffix": "Creamery",
    "union_flavors": "Vanilla",
}
for key, value in DEFAULTS.items():
    if key not in st.session_state:
        st.session_state[key] = value


def split_names(text: str):
    return [n.strip() for n in text.split(",") if n.strip()]


def show_rows(title: str, rows, caption: str = ""):
    st.markdown(f"**{title}** — _rows: {len(rows)}_")
    if caption:
        st.caption(caption)
    if rows:
        st.table(as_records(rows))
    else:
        st.info("Empty result set.")


st.title("🍨 Ice Cream — query rewrite as index seeks and set operations")
st.write(
    "Restates `(Maker LIKE '% <suffix>' OR Flavor IN <union flavors>) AND Flavor IN <intersect flavors>` "
    "as `flavor seek ∩ (maker scan ⋃ flavor seek)` over in-memory indexes."
)

col1, col2 = st.columns([1, 1], gap="large")

with col1:
    st.subheader("Rows")
    st.text_area(
        "MakerFlavor rows",
        height=320,
        help="Header line " + ",".join(HEADER) + " followed by one row per line.",
        key="rows_text",
    )

with col2:
    st.subheader("Query")
    st.text_input("Intersect flavors (Flavor IN ...)", key="intersect_flavors")
    st.text_input("Maker suffix (Maker LIKE '% ...')", key="maker_suffix")
    st.text_input("Union flavors (OR Flavor IN ...)", key="union_flavors")
    show_deprecated = st.checkbox("Compare with deprecated BaseFlavor lookup", value=True)

try:
    ice_cream = IceCream(parse_rows(st.session_state.rows_text))
except IceCreamError as e:
    st.error(f"{type(e).__name__} while parsing rows: {e}")
    st.stop()

st.subheader("👀 All rows")
show_rows("MakerFlavor", ice_cream.get_rows())

if st.button("▶️ Run", type="primary"):
    try:
        intersect_flavors = split_names(st.session_state.intersect_flavors)
        union_flavors = split_names(st.session_state.union_flavors)
        suffix = st.session_state.maker_suffix.strip()

        plan = ice_cream.query_result_stepwise(intersect_flavors, suffix, union_flavors)
        st.success("Query executed successfully!")

        tabs = st.tabs(["Plan Steps", "Result Table", "Result Text"])
        with tabs[0]:
            show_rows("Outer: flavor seek", plan.outer, f"Flavor IN {intersect_flavors}")
            show_rows("Maker scan", plan.maker_like, f"Maker LIKE '% {suffix}'")
            show_rows("Flavor seek (union)", plan.flavor_union, f"Flavor IN {union_flavors}")
            show_rows("Inner: maker scan ⋃ flavor seek", plan.inner)
            if show_deprecated:
                with st.expander("Deprecated: BaseFlavor lookup"):
                    deprecated = ice_cream.get_base_flavor_set(union_flavors)
                    show_rows(
                        "BaseFlavor seek (union)",
                        deprecated,
                        f"{len(deprecated)} rows against {len(plan.flavor_union)} from the Flavor seek",
                    )
        with tabs[1]:
            show_rows("Outer ∩ Inner", plan.result)
            if plan.result:
                st.download_button("Download CSV", data=to_csv(plan.result), file_name="result.csv", mime="text/csv")
        with tabs[2]:
            st.code(pretty(plan.result), language="text")

    except IceCreamError as e:
        st.error(f"{type(e).__name__}: {e}")
    except Exception as e:
        st.exception(e)
else:
    st.info("Set the query parameters and press Run.")
