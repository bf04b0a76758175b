# services/statistics.py
"""
Aggregated review statistics for the administrator dashboard.

Ratings are loaded into a pandas DataFrame and the charts are returned as
plotly figure JSON, ready to be rendered by plotly.js in the template.
"""

import json
import logging
from datetime import timedelta
from typing import Any, Dict, List

import numpy as np
import pandas as pd
import plotly.graph_objs as go
import plotly.utils
from sqlalchemy import func, select

from core.database_models import db, Beer, Brewery, Review, ReviewRating, User, utcnow

logger = logging.getLogger(__name__)

RATING_COLUMNS = ['review_id', 'rating', 'beer_id', 'beer_name', 'brewery_name', 'created_at', 'is_hidden']


def _figure_json(fig: go.Figure) -> Dict[str, Any]:
    return json.loads(plotly.utils.PlotlyJSONEncoder().encode(fig))


def load_ratings_frame() -> pd.DataFrame:
    stmt = (
        select(
            ReviewRating.review_id, ReviewRating.rating, Beer.id, Beer.name,
            Brewery.name, Review.created_at, Review.is_hidden,
        )
        .join(Review, ReviewRating.review_id == Review.id)
        .outerjoin(Beer, ReviewRating.beer_id == Beer.id)
        .outerjoin(Brewery, ReviewRating.brewery_id == Brewery.id)
    )
    rows = db.session.execute(stmt).all()
    df = pd.DataFrame([tuple(row) for row in rows], columns=RATING_COLUMNS)
    if not df.empty:
        df['created_at'] = pd.to_datetime(df['created_at'])
        df['brewery_name'] = df['brewery_name'].fillna('Unknown')
        df['beer_name'] = df['beer_name'].fillna('Unknown')
        df['beer_id'] = df['beer_id'].astype(str)
    return df


def get_totals() -> Dict[str, int]:
    def count(model, *criteria):
        return db.session.scalar(select(func.count()).select_from(model).where(*criteria)) or 0

    return {
        'users': count(User),
        'banned_users': count(User, User.is_banned.is_(True)),
        'breweries': count(Brewery),
        'breweries_to_validate': count(Brewery, Brewery.needs_validation.is_(True)),
        'beers': count(Beer),
        'reviews': count(Review),
        'hidden_reviews': count(Review, Review.is_hidden.is_(True)),
        'reviews_pending_validation': count(Review, Review.status == 'pending_validation'),
    }


def reviews_per_brewery(df: pd.DataFrame, limit: int = 10) -> List[Dict[str, Any]]:
    if df.empty:
        return []
    counts = df.groupby('brewery_name')['review_id'].nunique().sort_values(ascending=False).head(limit)
    return [{'brewery': name, 'reviews': int(total)} for name, total in counts.items()]


def rating_distribution(df: pd.DataFrame) -> Dict[str, int]:
    if df.empty:
        return {str(value): 0 for value in range(1, 6)}
    counts = df['rating'].value_counts().reindex(range(1, 6), fill_value=0)
    return {str(value): int(total) for value, total in counts.items()}


def top_rated_beers(df: pd.DataFrame, limit: int = 10, min_reviews: int = 1) -> List[Dict[str, Any]]:
    """Best average rating first, ties broken by number of reviews"""
    if df.empty:
        return []
    df = df[~df['is_hidden'].fillna(False).astype(bool)]
    if df.empty:
        return []
    grouped = (
        df.groupby(['beer_id', 'beer_name', 'brewery_name'])['rating']
        .agg(average='mean', total='count')
        .reset_index()
    )
    grouped = grouped[grouped['total'] >= min_reviews]
    grouped = grouped.sort_values(['average', 'total'], ascending=[False, False]).head(limit)
    return [
        {
            'beer_id': row.beer_id,
            'beer': row.beer_name,
            'brewery': row.brewery_name,
            'average_rating': float(np.round(row.average, 1)),
            'reviews': int(row.total),
        }
        for row in grouped.itertuples(index=False)
    ]


def reviews_per_day(df: pd.DataFrame, days: int = 30) -> pd.Series:
    since = pd.Timestamp(utcnow() - timedelta(days=days)).normalize()
    index = pd.date_range(since, periods=days + 1, freq='D')
    if df.empty:
        return pd.Series(0, index=index)
    recent = df[df['created_at'] >= since].drop_duplicates('review_id')
    return recent.set_index('created_at').resample('D')['review_id'].count().reindex(index, fill_value=0)


def _build_charts(per_brewery, distribution, daily: pd.Series) -> Dict[str, Dict[str, Any]]:
    charts = {}

    fig_brewery = go.Figure(data=[go.Bar(
        x=[item['brewery'] for item in per_brewery],
        y=[item['reviews'] for item in per_brewery],
        marker_color='#c47f17'
    )])
    fig_brewery.update_layout(title='Reviews per brewery', xaxis_title='Brewery',
                              yaxis_title='Reviews', font=dict(size=12))
    charts['reviews_per_brewery'] = {'type': 'bar', 'data': _figure_json(fig_brewery)}

    fig_ratings = go.Figure(data=[go.Bar(
        x=list(distribution.keys()),
        y=list(distribution.values()),
        marker_color=['#dc3545', '#fd7e14', '#ffc107', '#8bc34a', '#28a745']
    )])
    fig_ratings.update_layout(title='Rating distribution', xaxis_title='Stars',
                              yaxis_title='Ratings', font=dict(size=12))
    charts['rating_distribution'] = {'type': 'bar', 'data': _figure_json(fig_ratings)}

    fig_daily = go.Figure(data=[go.Scatter(
        x=[ts.strftime('%Y-%m-%d') for ts in daily.index],
        y=[int(value) for value in daily.values],
        mode='lines+markers',
        line=dict(color='#007bff', width=3)
    )])
    fig_daily.update_layout(title='Reviews in the last 30 days', xaxis_title='Day',
                            yaxis_title='Reviews', font=dict(size=12))
    charts['reviews_per_day'] = {'type': 'line', 'data': _figure_json(fig_daily)}

    return charts


def get_dashboard_statistics(include_charts: bool = True) -> Dict[str, Any]:
    df = load_ratings_frame()
    per_brewery = reviews_per_brewery(df)
    distribution = rating_distribution(df)

    stats = {
        'totals': get_totals(),
        'average_rating': float(np.round(df['rating'].mean(), 2)) if not df.empty else 0.0,
        'reviews_per_brewery': per_brewery,
        'rating_distribution': distribution,
        'top_beers': top_rated_beers(df),
    }
    if include_charts:
        stats['charts'] = _build_charts(per_brewery, distribution, reviews_per_day(df))

    logger.debug(f"Statistics computed over {len(df)} ratings")
    return stats
