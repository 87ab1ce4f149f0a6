from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class PageCounter(db.Model):
    __tablename__ = 'pageviews'

    page_key = db.Column(db.Text, primary_key=True)
    views = db.Column(db.Integer, nullable=False, default=0, server_default='0')
    last_viewed = db.Column(db.DateTime)

    def __repr__(self):
        return f'<PageCounter {self.page_key!r} views={self.views}>'
